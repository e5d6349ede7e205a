from __future__ import annotations

import hashlib
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from pathlib import Path
from typing import Iterable, Optional, Sequence

from ..domain.enums import AnalysisPhase
from ..domain.models import Dependency
from ..errors import AnalysisError, ExceptionCollection
from .analyzers import Analyzer

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1 << 16


def hash_file(path: Path) -> tuple[str, str]:
    """Return (sha1, sha256) hex digests of a file."""
    sha1 = hashlib.sha1()
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            sha1.update(chunk)
            sha256.update(chunk)
    return sha1.hexdigest(), sha256.hexdigest()


def _walk(path: Path) -> Iterable[Path]:
    if path.is_file():
        yield path
        return
    for root, dirs, files in os.walk(path):
        dirs[:] = sorted(d for d in dirs if not d.startswith("."))
        for name in sorted(files):
            yield Path(root) / name


class AnalysisEngine:
    """Runs the analyzer registry over scanned artifacts, phase by phase.

    Within a phase each analyzer gets one task per accepted dependency. Tasks
    run on a pool sized to the CPU count when the analyzer supports it, else on
    a single worker. A task that raises or exceeds timeout_seconds is recorded
    and the rest carry on; the collected failures are raised together at the
    end with the dependencies attached.
    """

    def __init__(
        self,
        analyzers: Sequence[Analyzer],
        *,
        timeout_seconds: float = 600.0,
        max_workers: Optional[int] = None,
    ) -> None:
        self._analyzers = list(analyzers)
        self._timeout = timeout_seconds
        self._max_workers = max_workers or os.cpu_count() or 1
        self._dependencies: list[Dependency] = []
        self._by_path: dict[str, Dependency] = {}
        self._by_hash: dict[tuple[str, str], Dependency] = {}

    @property
    def dependencies(self) -> list[Dependency]:
        return list(self._dependencies)

    @property
    def analyzers(self) -> list[Analyzer]:
        return list(self._analyzers)

    def get_dependency(self, related_id: str) -> Optional[Dependency]:
        """Resolve a dependency id or a related (merged) file path to its dependency."""
        found = self._by_path.get(related_id)
        if found is not None:
            return found
        for d in self._dependencies:
            if d.id == related_id:
                return d
        return None

    # scanning -------------------------------------------------------------

    def scan(self, paths: Iterable[str | Path]) -> list[Dependency]:
        """Add every file under the given paths. Byte-identical files fold into the first one seen."""
        added: list[Dependency] = []
        for root in paths:
            root = Path(root)
            if not root.exists():
                raise ValueError(f"Path does not exist: {root}")
            for path in _walk(root):
                key = str(path)
                if key in self._by_path:
                    continue
                sha1, sha256 = hash_file(path)
                dependency = Dependency(file_path=path, sha1=sha1, sha256=sha256)
                existing = self._by_hash.get((sha1, sha256))
                if existing is not None:
                    logger.debug(f"{path} is identical to {existing.file_path}")
                    existing.merge(dependency)
                    self._by_path[key] = existing
                    continue
                self._by_hash[(sha1, sha256)] = dependency
                self._by_path[key] = dependency
                self._dependencies.append(dependency)
                added.append(dependency)
        logger.info(f"Scanned {len(self._by_path)} files, {len(self._dependencies)} unique dependencies")
        return added

    def add_dependency(self, dependency: Dependency) -> None:
        """Register an already built dependency, e.g. one with evidence collected elsewhere."""
        self._dependencies.append(dependency)
        self._by_path[str(dependency.file_path)] = dependency

    # analysis -------------------------------------------------------------

    def analyze_dependencies(self) -> list[Dependency]:
        exceptions: list[BaseException] = []
        for phase in AnalysisPhase:
            for analyzer in (a for a in self._analyzers if a.phase is phase):
                logger.debug(f"Running {analyzer.name} ({phase.name})")
                exceptions.extend(self._run(analyzer))
                if any(getattr(e, "fatal", False) for e in exceptions):
                    raise ExceptionCollection(exceptions, fatal=True, result=self.dependencies, message="Analysis aborted")

        logger.info(f"Analysis complete for {len(self._dependencies)} dependencies")
        if exceptions:
            raise ExceptionCollection(exceptions, fatal=False, result=self.dependencies, message="Analysis incomplete")
        return self.dependencies

    def _run(self, analyzer: Analyzer) -> list[BaseException]:
        tasks = [d for d in self._dependencies if analyzer.accept(d)]
        if not tasks:
            return []
        workers = self._max_workers if analyzer.supports_parallel else 1
        errors: list[BaseException] = []
        timed_out = False
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="analyzer")
        try:
            futures = [(d, pool.submit(analyzer.analyze, d, self)) for d in tasks]
            for dependency, future in futures:
                try:
                    future.result(timeout=self._timeout)
                except FuturesTimeoutError:
                    timed_out = True
                    future.cancel()
                    logger.warning(f"{analyzer.name} timed out on {dependency.file_name}")
                    errors.append(AnalysisError(
                        f"{analyzer.name} timed out after {self._timeout:.0f}s on {dependency.file_path}",
                        dependency.id,
                    ))
                except Exception as e:
                    logger.warning(f"{analyzer.name} failed on {dependency.file_name}: {e}")
                    if getattr(e, "fatal", False):
                        errors.append(e)
                        continue
                    error = AnalysisError(f"{analyzer.name} failed on {dependency.file_path}: {e}", dependency.id)
                    error.__cause__ = e
                    errors.append(error)
        finally:
            pool.shutdown(wait=not timed_out, cancel_futures=timed_out)
        return errors
