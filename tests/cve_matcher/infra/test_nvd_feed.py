from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from cve_matcher.core.domain.enums import Severity
from cve_matcher.core.errors import UpdateError
from cve_matcher.core.ports.feed_port import FatalFailure, FetchSuccess, RetryableFailure
from cve_matcher.infra.http_client import HttpClient
from cve_matcher.infra.nvd_feed import NvdFeedSource

BASE = "https://feeds.test/nvd/"
STRUTS = "cpe:2.3:a:apache:struts2:*:*:*:*:*:*:*:*"

META = (
    b"lastModifiedDate:2024-06-01T03:00:01-04:00\r\n"
    b"size:1024\r\n"
    b"gzSize:256\r\n"
    b"sha256:ABCDEF\r\n"
)


@pytest.fixture
def source(mock_httpx_client, clock):
    client = HttpClient()
    yield NvdFeedSource(client, base_url=BASE, start_year=2022, clock=clock)
    client.close()


def test_partitions_are_yearly_then_modified(source):
    parts = source.partitions()
    assert [p.id for p in parts] == ["2022", "2023", "2024", "modified"]
    assert parts[0].url == "https://feeds.test/nvd/nvdcve-2.0-2022.json.gz"
    assert parts[0].meta_url == "https://feeds.test/nvd/nvdcve-2.0-2022.meta"


def test_new_year_partition_appears_at_earliest_timezone(clock):
    clock._now = datetime(2024, 12, 31, 11, 0, tzinfo=timezone.utc)
    source = NvdFeedSource(HttpClient(), base_url=BASE, start_year=2024, clock=clock)
    assert [p.id for p in source.partitions()] == ["2024", "2025", "modified"]


def test_fetch_classifies_responses(source, mock_httpx_client):
    mock_httpx_client(BASE + "ok", content=b"payload")
    mock_httpx_client(BASE + "limited", status_code=429, headers={"Retry-After": "12"})
    mock_httpx_client(BASE + "unavailable", status_code=503)

    assert source.fetch(BASE + "ok") == FetchSuccess(content=b"payload")

    limited = source.fetch(BASE + "limited")
    assert isinstance(limited, RetryableFailure)
    assert limited.rate_limited and limited.retry_after == 12.0

    assert isinstance(source.fetch(BASE + "unavailable"), RetryableFailure)

    missing = source.fetch(BASE + "missing")
    assert isinstance(missing, FatalFailure)
    assert missing.status_code == 404


def test_parse_last_modified(source):
    assert source.parse_last_modified(META) == 1717225201


def test_parse_last_modified_without_date(source):
    with pytest.raises(UpdateError):
        source.parse_last_modified(b"size:1024\r\n")


def test_parse_records(source, nvd_feed_bytes, nvd_cve):
    content = nvd_feed_bytes(
        nvd_cve("CVE-2017-5638", [STRUTS], score=10.0, description="Struts RCE"),
        nvd_cve("CVE-2018-0001", [STRUTS], status="Rejected"),
        nvd_cve("CVE-2019-0001", [STRUTS], score=None),
    )
    struts, rejected, unscored = list(source.parse_records(content))

    assert struts.name == "CVE-2017-5638"
    assert struts.description == "Struts RCE"
    assert struts.highest_score == 10.0
    assert struts.severity is Severity.CRITICAL
    assert struts.cwes == ("CWE-20",)
    assert [s.product for s in struts.software] == ["struts2"]
    assert struts.references[0].tags == ("Advisory",)
    assert not struts.rejected

    assert rejected.rejected
    assert unscored.cvss == ()
    assert unscored.severity is None


def test_parse_records_accepts_uncompressed_json(source):
    doc = {"vulnerabilities": [{"cve": {"id": "CVE-2020-0001"}}]}
    [record] = list(source.parse_records(json.dumps(doc).encode()))
    assert record.name == "CVE-2020-0001"


def test_parse_records_rejects_invalid_document(source):
    with pytest.raises(UpdateError):
        list(source.parse_records(b'{"vulnerabilities": [{"cve": {}}]}'))
