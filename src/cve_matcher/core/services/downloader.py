from __future__ import annotations

import logging
from typing import Optional

from ..errors import DownloadFailedError
from ..ports.cache_port import CachePort
from ..ports.clock_port import ClockPort, SystemClock
from ..ports.feed_port import FatalFailure, FeedSourcePort, FetchSuccess, RetryableFailure

logger = logging.getLogger(__name__)


class Downloader:
    """Fetch feed files with a short-lived cache and a bounded retry loop.

    Attempts are driven by the tagged outcomes of FeedSourcePort.fetch:
    FetchSuccess ends the loop, FatalFailure (e.g. 404) fails at once,
    RetryableFailure backs off and tries again until max_attempts is spent.
    """

    def __init__(
        self,
        source: FeedSourcePort,
        cache: Optional[CachePort] = None,
        *,
        cache_ttl_seconds: int = 4 * 3600,
        max_attempts: int = 5,
        backoff_seconds: float = 2.0,
        rate_limit_backoff_seconds: float = 30.0,
        clock: Optional[ClockPort] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._source = source
        self._cache = cache
        self._cache_ttl = cache_ttl_seconds
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds
        self._rate_limit_backoff = rate_limit_backoff_seconds
        self._clock = clock or SystemClock()

    @staticmethod
    def cache_key(url: str, version: Optional[int] = None) -> str:
        key = "feed:" + url.rsplit("/", 1)[-1]
        return key if version is None else f"{key}@{version}"

    def download(self, url: str, *, use_cache: bool = True, version: Optional[int] = None) -> bytes:
        """Return the content at url. Raises DownloadFailedError once retries are exhausted.

        version is the upstream timestamp of the content; a cached copy is only
        reused when it was stored under the same version.
        """
        key = self.cache_key(url, version)
        if use_cache and self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                logger.info(f"Using cached copy of {url}")
                return cached

        last_reason = "no attempt made"
        for attempt in range(1, self._max_attempts + 1):
            logger.debug(f"Download attempt {attempt}/{self._max_attempts}: {url}")
            outcome = self._source.fetch(url)

            if isinstance(outcome, FetchSuccess):
                if use_cache and self._cache is not None and self._cache_ttl > 0:
                    self._cache.set(key, outcome.content, ttl_seconds=self._cache_ttl)
                return outcome.content

            if isinstance(outcome, FatalFailure):
                raise DownloadFailedError(url, outcome.reason)

            assert isinstance(outcome, RetryableFailure)
            last_reason = outcome.reason
            if attempt == self._max_attempts:
                break
            delay = self._delay(attempt, outcome)
            logger.warning(f"Download of {url} failed ({outcome.reason}); retrying in {delay:.1f}s")
            self._clock.sleep(delay)

        raise DownloadFailedError(url, f"{last_reason} after {self._max_attempts} attempts")

    def _delay(self, attempt: int, outcome: RetryableFailure) -> float:
        if outcome.rate_limited:
            longer = self._rate_limit_backoff * attempt
            return max(longer, outcome.retry_after or 0.0)
        return self._backoff * (2 ** (attempt - 1))
