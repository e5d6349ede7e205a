from __future__ import annotations

import gzip
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional

import httpx
from pydantic import ValidationError

from ..config.urls import DEFAULT_FEED_BASE_URL, get_feed_url, get_meta_url
from ..core.domain.cpe import Cpe
from ..core.domain.models import CvssScore, FeedPartition, Reference, VulnerableSoftware, Vulnerability
from ..core.errors import UpdateError
from ..core.ports.clock_port import ClockPort, SystemClock
from ..core.ports.feed_port import FatalFailure, FeedSourcePort, FetchOutcome, FetchSuccess, RetryableFailure
from ..shared.severity import base_score_from_vector, resolve_severity
from .http_client import HttpClient
from .schemas import CvssMetric, NvdCve, NvdFeed

logger = logging.getLogger(__name__)

MODIFIED_PARTITION = "modified"

# The newest yearly file appears as soon as the year starts anywhere on earth.
_EARLIEST_TIMEZONE = timezone(timedelta(hours=14))

_GZIP_MAGIC = b"\x1f\x8b"


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _primary(metrics: list[CvssMetric]) -> Optional[CvssMetric]:
    for m in metrics:
        if (m.type or "").lower() == "primary":
            return m
    return metrics[0] if metrics else None


def _to_score(metric: CvssMetric) -> CvssScore:
    data = metric.cvss_data
    base = data.base_score
    if base is None and data.vector_string:
        base = base_score_from_vector(data.vector_string)
    score = float(base) if base is not None else -1.0
    return CvssScore(
        version=data.version,
        base_score=score,
        severity=resolve_severity(data.version, score, data.base_severity or metric.base_severity),
        vector=data.vector_string,
    )


def _to_domain(cve: NvdCve) -> Vulnerability:
    description = next((d.value for d in cve.descriptions if d.lang == "en"), None)
    if description is None and cve.descriptions:
        description = cve.descriptions[0].value

    scores: list[CvssScore] = []
    for metrics in (
        cve.metrics.cvss_metric_v40,
        cve.metrics.cvss_metric_v31,
        cve.metrics.cvss_metric_v30,
        cve.metrics.cvss_metric_v2,
    ):
        metric = _primary(metrics)
        if metric is not None:
            scores.append(_to_score(metric))

    cwes: list[str] = []
    for weakness in cve.weaknesses:
        for d in weakness.description:
            if d.value.startswith("CWE-") and d.value not in cwes:
                cwes.append(d.value)

    software: list[VulnerableSoftware] = []
    for config in cve.configurations:
        for node in config.nodes:
            for match in node.cpe_match:
                try:
                    cpe = Cpe.parse(match.criteria)
                except ValueError:
                    logger.debug("Skipping unparsable CPE %s in %s", match.criteria, cve.id)
                    continue
                entry = VulnerableSoftware(
                    cpe=cpe,
                    version_start_including=match.version_start_including,
                    version_start_excluding=match.version_start_excluding,
                    version_end_including=match.version_end_including,
                    version_end_excluding=match.version_end_excluding,
                    vulnerable=match.vulnerable,
                )
                if entry not in software:
                    software.append(entry)

    rejected = (cve.vuln_status or "").lower() == "rejected" or (description or "").startswith("** REJECT **")
    return Vulnerability(
        name=cve.id,
        description=description,
        cvss=tuple(scores),
        cwes=tuple(cwes),
        references=tuple(Reference(url=r.url, source=r.source, tags=tuple(r.tags)) for r in cve.references),
        software=tuple(software),
        published_at=_parse_timestamp(cve.published),
        last_modified_at=_parse_timestamp(cve.last_modified),
        rejected=rejected,
    )


class NvdFeedSource(FeedSourcePort):
    """NVD CVE JSON 2.0 data feeds: one gzip file per year plus a rolling "modified" file."""

    def __init__(
        self,
        http_client: HttpClient,
        base_url: str = DEFAULT_FEED_BASE_URL,
        start_year: int = 2002,
        clock: Optional[ClockPort] = None,
    ) -> None:
        self._http = http_client
        self._base_url = base_url
        self._start_year = start_year
        self._clock = clock or SystemClock()

    def partitions(self) -> list[FeedPartition]:
        end_year = self._clock.now().astimezone(_EARLIEST_TIMEZONE).year
        ids = [str(year) for year in range(self._start_year, end_year + 1)]
        ids.append(MODIFIED_PARTITION)
        return [
            FeedPartition(id=pid, url=get_feed_url(self._base_url, pid), meta_url=get_meta_url(self._base_url, pid))
            for pid in ids
        ]

    def fetch(self, url: str) -> FetchOutcome:
        try:
            resp = self._http.get(url)
        except httpx.TransportError as e:
            return RetryableFailure(reason=f"{type(e).__name__}: {e}")

        status = resp.status_code
        if 200 <= status < 300:
            return FetchSuccess(content=resp.content)
        if status == 429:
            return RetryableFailure(
                reason="HTTP 429 Too Many Requests",
                rate_limited=True,
                retry_after=_parse_retry_after(resp.headers.get("Retry-After")),
            )
        if 400 <= status < 500:
            return FatalFailure(reason=f"HTTP {status}", status_code=status)
        return RetryableFailure(reason=f"HTTP {status}")

    def parse_last_modified(self, meta: bytes) -> int:
        for line in meta.decode("utf-8", errors="replace").splitlines():
            key, _, value = line.partition(":")
            if key.strip() == "lastModifiedDate":
                ts = _parse_timestamp(value)
                if ts is not None:
                    return int(ts.timestamp())
        raise UpdateError("Feed metadata does not contain lastModifiedDate")

    def parse_records(self, content: bytes) -> Iterator[Vulnerability]:
        data = gzip.decompress(content) if content[:2] == _GZIP_MAGIC else content
        try:
            feed = NvdFeed.model_validate_json(data)
        except ValidationError as e:
            raise UpdateError(f"Invalid NVD feed document: {e}") from e
        logger.debug("Parsed feed with %d vulnerabilities", len(feed.vulnerabilities))
        for item in feed.vulnerabilities:
            yield _to_domain(item.cve)
