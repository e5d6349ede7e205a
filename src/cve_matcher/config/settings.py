from __future__ import annotations

from pathlib import Path
from typing import Optional
from urllib.parse import quote

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .urls import DEFAULT_FEED_BASE_URL


class AppConfig(BaseSettings):
    """Application configuration with automatic environment variable loading.

    All settings can be overridden via environment variables with the CVE_MATCHER_ prefix.
    For example:
        - CVE_MATCHER_DATA_DIR=/var/lib/cve-matcher
        - CVE_MATCHER_FEED_BASE_URL=https://mirror.example.org/nvd/
        - CVE_MATCHER_PROXY_HOST=proxy.local CVE_MATCHER_PROXY_PORT=3128
        - CVE_MATCHER_AUTO_UPDATE=false

    Alternatively, settings can be provided programmatically:
        container = Container()
        container.config.from_pydantic(AppConfig(data_dir="/tmp/data"))
    """

    model_config = SettingsConfigDict(
        env_prefix="CVE_MATCHER_",
        case_sensitive=False,
        extra="forbid",
    )

    data_dir: Optional[Path] = Field(
        default=None,
        description="Directory holding the vulnerability database and update lock. If None, uses platformdirs.user_data_dir('cve-matcher')",
    )

    cache_dir: Optional[Path] = Field(
        default=None,
        description="Directory for downloaded feed files. If None, uses platformdirs.user_cache_dir('cve-matcher')",
    )

    # feed -------------------------------------------------------------------

    feed_base_url: str = Field(
        default=DEFAULT_FEED_BASE_URL,
        description="Base URL of the NVD CVE JSON 2.0 data feeds (nvdcve-2.0-<partition>.json.gz and .meta)",
    )

    feed_start_year: int = Field(
        default=2002,
        ge=1999,
        description="First yearly feed partition to import",
    )

    cpe_starts_with: str = Field(
        default="cpe:2.3:a:",
        description="Only affected-software entries whose CPE starts with this prefix are imported",
    )

    auto_update: bool = Field(
        default=True,
        description="Update the vulnerability database before analysis",
    )

    update_valid_for_hours: float = Field(
        default=4.0,
        ge=0,
        description="Skip the feed check when the last successful check is newer than this",
    )

    # downloads --------------------------------------------------------------

    download_cache_ttl_hours: int = Field(
        default=4,
        ge=0,
        description="How long a downloaded feed file is reused from the local cache",
    )

    download_max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum attempts per feed file before the partition fails",
    )

    download_backoff_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Base delay between download attempts; doubled after every failure",
    )

    rate_limit_backoff_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Delay applied after a rate-limit response, multiplied by the attempt number",
    )

    max_download_workers: int = Field(
        default=4,
        ge=1,
        description="Feed partitions downloaded concurrently",
    )

    connection_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="HTTP connection/read timeout",
    )

    requests_per_second: Optional[float] = Field(
        default=None,
        gt=0,
        description="Upper bound on feed requests per second across all download workers. None disables throttling",
    )

    proxy_host: Optional[str] = Field(default=None, description="HTTP(S) proxy host")
    proxy_port: Optional[int] = Field(default=None, ge=1, le=65535, description="HTTP(S) proxy port")
    proxy_username: Optional[str] = Field(default=None, description="Proxy user name")
    proxy_password: Optional[str] = Field(default=None, description="Proxy password")

    # locking ------------------------------------------------------------------

    lock_max_wait_seconds: float = Field(
        default=2400.0,
        ge=0,
        description="Longest time to wait for the data directory lock",
    )

    lock_poll_interval_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Delay between lock acquisition attempts",
    )

    # analysis -----------------------------------------------------------------

    analysis_timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Time allowed for one analyzer task on one artifact",
    )

    max_query_results: int = Field(
        default=25,
        ge=1,
        description="Candidates retrieved from the index per artifact",
    )

    min_match_score: float = Field(
        default=1.0,
        ge=0,
        description="An identifier is only reported when its evidence score exceeds this floor",
    )

    weight_high: float = Field(default=3.0, gt=0, description="Score weight of HIGH confidence evidence")
    weight_medium: float = Field(default=2.0, gt=0, description="Score weight of MEDIUM confidence evidence")
    weight_low: float = Field(default=1.0, gt=0, description="Score weight of LOW confidence evidence")

    suppression_file: Optional[Path] = Field(
        default=None,
        description="JSON suppression rule file applied to every scan",
    )

    @model_validator(mode="after")
    def _check_weights(self) -> "AppConfig":
        if not self.weight_high > self.weight_medium > self.weight_low:
            raise ValueError("weights must satisfy weight_high > weight_medium > weight_low")
        if self.weight_high < 2 * self.weight_low:
            raise ValueError("weight_high must be at least twice weight_low")
        return self

    @property
    def proxy_url(self) -> Optional[str]:
        return build_proxy_url(self.proxy_host, self.proxy_port, self.proxy_username, self.proxy_password)


def build_proxy_url(
    host: Optional[str],
    port: Optional[int] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> Optional[str]:
    if not host:
        return None
    auth = ""
    if username:
        auth = quote(username, safe="")
        if password:
            auth += ":" + quote(password, safe="")
        auth += "@"
    port_part = f":{port}" if port else ""
    return f"http://{auth}{host}{port_part}"
