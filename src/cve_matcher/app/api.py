from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

from .container import Container
from ..config.settings import AppConfig
from ..core.domain.models import Dependency
from ..core.usecases.update_database import UpdateResult
from ..infra.suppression_loader import load_suppressions


class CveMatcherClient:
    """Client for identifying vulnerable third-party artifacts.

    The container and its resources (vulnerability database, candidate index,
    download cache and HTTP client) are initialized once and reused across calls.

    Example:
        # Using default configuration (from environment variables)
        client = CveMatcherClient()
        client.update()
        dependencies = client.scan(["./lib"])
        client.close()

        # Using context manager (recommended)
        with CveMatcherClient() as client:
            for dep in client.scan(["./lib"]):
                print(dep.file_name, [v.name for v in dep.vulnerabilities])

        # Customize settings
        with CveMatcherClient(data_dir="/srv/cve-matcher", auto_update=False) as client:
            dependencies = client.scan(["./build/libs"])
    """

    def __init__(self, **overrides: Any):
        """Initialize the client.

        Args:
            **overrides: Any AppConfig field (data_dir, cache_dir, feed_base_url, auto_update,
                proxy_host, suppression_file, ...). Fields not given fall back to the
                CVE_MATCHER_* environment variables, then to the defaults.

        Raises:
            pydantic.ValidationError: If an override is not a valid AppConfig field or value.
            DatabaseUnavailableError: If the vulnerability database cannot be opened.

        Example:
            # Use all defaults (from environment)
            client = CveMatcherClient()

            # Route feed downloads through a proxy
            client = CveMatcherClient(proxy_host="proxy.local", proxy_port=3128)
        """
        self._container = Container()
        config_dict = {k: v for k, v in overrides.items() if v is not None}
        self._container.config.from_pydantic(AppConfig(**config_dict))
        self._container.init_resources()

    def update(self, *, force: bool = False) -> UpdateResult:
        """Bring the local vulnerability database up to date with the NVD feeds.

        Args:
            force: Check every feed partition even if the last check is still valid.

        Returns:
            UpdateResult with the final state of every feed partition.

        Raises:
            LockTimeoutError: If another process holds the data directory lock for too long.
            ExceptionCollection: If one or more partitions failed; `result` holds the UpdateResult.
        """
        uc = self._container.update_uc()
        return uc.execute(force=force)

    def scan(
        self,
        paths: Sequence[str | Path],
        *,
        suppression_file: str | Path | None = None,
    ) -> list[Dependency]:
        """Scan files and directories and report the vulnerabilities of each artifact.

        Args:
            paths: Files or directories to scan. Directories are walked recursively.
            suppression_file: Extra JSON suppression rules, applied on top of the configured ones.

        Returns:
            One Dependency per distinct artifact, with its identifiers, vulnerabilities
            and the suppressed identifiers/vulnerabilities kept separately.

        Raises:
            NoDataError: If the database is empty and could not be updated.
            SuppressionParseError: If the suppression file is invalid.
            ExceptionCollection: If some artifacts could not be fully analyzed; `result`
                holds the dependencies.

        Example:
            with CveMatcherClient() as client:
                for dep in client.scan(["./lib"], suppression_file="suppressions.json"):
                    for v in dep.vulnerabilities:
                        print(dep.file_name, v.name, v.severity)
        """
        rules = load_suppressions(suppression_file) if suppression_file else []
        uc = self._container.analyze_uc()
        return uc.execute(list(paths), suppression_rules=rules)

    def purge(self) -> None:
        """Delete the local vulnerability database and the downloaded feed files."""
        uc = self._container.purge_uc()
        uc.execute()

    def clear_cache(self, prefix: str | None = None) -> None:
        """Clear the download cache (optionally only keys with the given prefix)."""
        uc = self._container.clear_cache_uc()
        uc.execute(prefix=prefix)

    def close(self) -> None:
        """Close and cleanup resources."""
        self._container.shutdown_resources()

    def __enter__(self) -> "CveMatcherClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


__all__ = ["CveMatcherClient", "AppConfig"]
