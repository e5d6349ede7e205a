from __future__ import annotations

import tempfile

import pytest

from cve_matcher.core.errors import DownloadFailedError
from cve_matcher.core.ports.feed_port import FatalFailure, FetchSuccess, RetryableFailure
from cve_matcher.core.services.downloader import Downloader
from cve_matcher.infra.cache_diskcache import DiskCacheAdapter

URL = "https://feeds.test/nvdcve-2.0-2024.json.gz"


class ScriptedSource:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def fetch(self, url):
        self.calls += 1
        return self.outcomes.pop(0)


def test_retries_transient_failures_with_exponential_backoff(clock):
    source = ScriptedSource([RetryableFailure("timeout"), RetryableFailure("HTTP 503"), FetchSuccess(b"data")])
    d = Downloader(source, clock=clock, backoff_seconds=2.0)

    assert d.download(URL) == b"data"
    assert source.calls == 3
    assert clock.sleeps == [2.0, 4.0]


def test_client_error_fails_immediately(clock):
    source = ScriptedSource([FatalFailure("HTTP 404", status_code=404), FetchSuccess(b"never")])
    d = Downloader(source, clock=clock)

    with pytest.raises(DownloadFailedError) as exc:
        d.download(URL)
    assert "404" in str(exc.value)
    assert source.calls == 1
    assert clock.sleeps == []


def test_retry_attempts_are_bounded(clock):
    source = ScriptedSource([RetryableFailure("reset")] * 10)
    d = Downloader(source, clock=clock, max_attempts=3)

    with pytest.raises(DownloadFailedError):
        d.download(URL)
    assert source.calls == 3
    assert len(clock.sleeps) == 2


def test_rate_limit_waits_longer(clock):
    source = ScriptedSource([
        RetryableFailure("HTTP 429", rate_limited=True, retry_after=None),
        RetryableFailure("HTTP 429", rate_limited=True, retry_after=120.0),
        FetchSuccess(b"ok"),
    ])
    d = Downloader(source, clock=clock, backoff_seconds=2.0, rate_limit_backoff_seconds=30.0)

    assert d.download(URL) == b"ok"
    assert clock.sleeps == [30.0, 120.0]


def test_successful_download_is_cached_by_file_name(clock):
    with tempfile.TemporaryDirectory() as tmp:
        with DiskCacheAdapter(namespace="test", base_dir=tmp) as cache:
            source = ScriptedSource([FetchSuccess(b"payload")])
            d = Downloader(source, cache, clock=clock)

            assert d.download(URL) == b"payload"
            assert cache.get("feed:nvdcve-2.0-2024.json.gz") == b"payload"
            # second call served from cache
            assert d.download(URL) == b"payload"
            assert source.calls == 1


def test_use_cache_false_always_fetches(clock):
    with tempfile.TemporaryDirectory() as tmp:
        with DiskCacheAdapter(namespace="test", base_dir=tmp) as cache:
            cache.set("feed:nvdcve-2.0-2024.meta", b"stale")
            source = ScriptedSource([FetchSuccess(b"fresh")])
            d = Downloader(source, cache, clock=clock)

            assert d.download("https://feeds.test/nvdcve-2.0-2024.meta", use_cache=False) == b"fresh"
            assert cache.get("feed:nvdcve-2.0-2024.meta") == b"stale"


def test_cached_copy_is_keyed_by_upstream_version(clock):
    with tempfile.TemporaryDirectory() as tmp:
        with DiskCacheAdapter(namespace="test", base_dir=tmp) as cache:
            source = ScriptedSource([FetchSuccess(b"old"), FetchSuccess(b"new")])
            d = Downloader(source, cache, clock=clock)

            assert d.download(URL, version=1000) == b"old"
            assert d.download(URL, version=1000) == b"old"
            assert d.download(URL, version=1500) == b"new"
            assert source.calls == 2
            assert cache.get("feed:nvdcve-2.0-2024.json.gz@1500") == b"new"
