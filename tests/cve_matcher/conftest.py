"""tests/cve_matcher/conftest.py

Common fixtures for the entire test suite.
"""

import gzip
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest
from typer.testing import CliRunner

from cve_matcher.core.domain.models import FeedPartition, Vulnerability
from cve_matcher.core.ports.feed_port import FetchSuccess


@pytest.fixture(scope="session")
def runner() -> CliRunner:
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture(autouse=True)
def tmp_dirs(tmp_path: Path, monkeypatch):
    """
    Redirects cache and data directories to a temporary location for test isolation.
    This fixture runs automatically for every test function.
    """
    cache_dir = tmp_path / "cache"
    data_dir = tmp_path / "data"
    cache_dir.mkdir()
    data_dir.mkdir()

    monkeypatch.setenv("CVE_MATCHER_CACHE_DIR", str(cache_dir))
    monkeypatch.setenv("CVE_MATCHER_DATA_DIR", str(data_dir))

    yield cache_dir, data_dir


@pytest.fixture
def mock_httpx_client(monkeypatch):
    """
    Replaces httpx.Client with a mock that uses a MockTransport.

    Returns a handler function that tests can use to register mock responses.
    """
    responses = {}
    calls_log: list[tuple[str, str]] = []
    original_client = httpx.Client

    def add_response(
        url: str,
        method: str = "GET",
        status_code: int = 200,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ):
        """Register a mock response for a given URL and method."""
        responses[(method.upper(), url)] = (status_code, content or b"", headers or {})

    def mock_transport(request: httpx.Request) -> httpx.Response:
        """The transport logic that returns registered responses or a 404."""
        key = (request.method, str(request.url))
        calls_log.append(key)
        if key in responses:
            status, body, headers = responses[key]
            return httpx.Response(status, content=body, headers={"Content-Length": str(len(body)), **headers})
        return httpx.Response(404, text=f"Mock URL not found: {request.method} {request.url}")

    def patched_client(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(mock_transport)
        return original_client(*args, **kwargs)

    monkeypatch.setattr(httpx, "Client", patched_client)
    add_response.calls = calls_log  # type: ignore[attr-defined]
    return add_response


class FakeClock:
    """Clock whose sleep() only advances time."""

    def __init__(self, now: datetime | None = None) -> None:
        self._now = now or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        self._mono = 0.0
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._mono

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)

    def advance(self, seconds: float) -> None:
        self._mono += seconds
        self._now += timedelta(seconds=seconds)


class FakeFeedSource:
    """In-memory feed: meta files hold a bare epoch timestamp, content maps to canned records."""

    def __init__(self, partition_ids: list[str]) -> None:
        self.partition_ids = partition_ids
        self.files: dict[str, object] = {}
        self.records: dict[bytes, list[Vulnerability]] = {}
        self.fetched: list[str] = []

    @staticmethod
    def url(pid: str) -> str:
        return f"https://feeds.test/nvdcve-2.0-{pid}.json.gz"

    @staticmethod
    def meta_url(pid: str) -> str:
        return f"https://feeds.test/nvdcve-2.0-{pid}.meta"

    def publish(self, pid: str, last_modified: int, records: list[Vulnerability]) -> None:
        content = f"{pid}@{last_modified}".encode()
        self.files[self.meta_url(pid)] = str(last_modified).encode()
        self.files[self.url(pid)] = content
        self.records[content] = records

    def partitions(self) -> list[FeedPartition]:
        return [FeedPartition(id=p, url=self.url(p), meta_url=self.meta_url(p)) for p in self.partition_ids]

    def fetch(self, url: str):
        self.fetched.append(url)
        value = self.files[url]
        if isinstance(value, list):
            return value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, bytes):
            return FetchSuccess(content=value)
        return value

    def parse_last_modified(self, meta: bytes) -> int:
        return int(meta.decode())

    def parse_records(self, content: bytes):
        return iter(self.records[content])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_feed_source():
    """Factory for FakeFeedSource instances."""
    return FakeFeedSource


def _cve_item(cve_id: str, cpes: list[str], score: float | None, status: str, description: str) -> dict:
    metrics = {}
    if score is not None:
        metrics["cvssMetricV31"] = [{
            "source": "nvd@nist.gov",
            "type": "Primary",
            "cvssData": {
                "version": "3.1",
                "vectorString": "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H",
                "baseScore": score,
                "baseSeverity": "CRITICAL" if score >= 9 else "HIGH",
            },
        }]
    return {
        "cve": {
            "id": cve_id,
            "vulnStatus": status,
            "published": "2017-03-11T02:59:00.150",
            "lastModified": "2024-02-15T16:07:02.123",
            "descriptions": [{"lang": "en", "value": description}],
            "metrics": metrics,
            "weaknesses": [{"source": "nvd@nist.gov", "type": "Primary", "description": [{"lang": "en", "value": "CWE-20"}]}],
            "configurations": [{"nodes": [{
                "operator": "OR",
                "negate": False,
                "cpeMatch": [{"vulnerable": True, "criteria": c, "matchCriteriaId": "X"} for c in cpes],
            }]}],
            "references": [{"url": f"https://example.org/{cve_id}", "source": "nvd@nist.gov", "tags": ["Advisory"]}],
        }
    }


@pytest.fixture
def nvd_feed_bytes():
    """Factory producing a gzipped NVD JSON 2.0 feed document."""

    def _build(*items: dict) -> bytes:
        doc = {
            "resultsPerPage": len(items),
            "startIndex": 0,
            "totalResults": len(items),
            "format": "NVD_CVE",
            "version": "2.0",
            "timestamp": "2024-06-01T00:00:00.000",
            "vulnerabilities": list(items),
        }
        return gzip.compress(json.dumps(doc).encode("utf-8"))

    return _build


@pytest.fixture
def nvd_cve():
    """Factory producing one NVD JSON 2.0 vulnerability item."""

    def _build(
        cve_id: str,
        cpes: list[str],
        score: float | None = 9.8,
        status: str = "Analyzed",
        description: str = "A vulnerability",
    ) -> dict:
        return _cve_item(cve_id, cpes, score, status, description)

    return _build


FEED_BASE_URL = "https://feeds.test/nvd/"
STRUTS2_CPE = "cpe:2.3:a:apache:struts2:*:*:*:*:*:*:*:*"


@pytest.fixture
def nvd_server(mock_httpx_client, nvd_feed_bytes, nvd_cve, monkeypatch):
    """Serve every feed partition from the mock transport; CVE-2017-5638 lives in "modified"."""
    monkeypatch.setenv("CVE_MATCHER_FEED_BASE_URL", FEED_BASE_URL)
    monkeypatch.setenv("CVE_MATCHER_FEED_START_YEAR", "2024")
    end_year = datetime.now(timezone(timedelta(hours=14))).year
    meta = b"lastModifiedDate:2024-06-01T03:00:01-04:00\r\nsize:1\r\n"
    struts = nvd_cve("CVE-2017-5638", [STRUTS2_CPE], score=10.0, description="Struts RCE")
    for pid in [*(str(y) for y in range(2024, end_year + 1)), "modified"]:
        mock_httpx_client(f"{FEED_BASE_URL}nvdcve-2.0-{pid}.meta", content=meta)
        items = [struts] if pid == "modified" else []
        mock_httpx_client(f"{FEED_BASE_URL}nvdcve-2.0-{pid}.json.gz", content=nvd_feed_bytes(*items))
    return mock_httpx_client


@pytest.fixture
def struts_project(tmp_path) -> Path:
    """A directory holding an npm manifest for struts2 2.3.31 and an unrelated file."""
    root = tmp_path / "project"
    pkg = root / "node_modules" / "struts2"
    pkg.mkdir(parents=True)
    (pkg / "package.json").write_text(json.dumps({"name": "struts2", "version": "2.3.31", "author": "Apache"}))
    (root / "README.txt").write_text("hello")
    return root
