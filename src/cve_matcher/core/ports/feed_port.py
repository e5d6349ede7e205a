from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional, Protocol, Union

from ..domain.models import FeedPartition, Vulnerability


@dataclass(frozen=True)
class FetchSuccess:
    content: bytes


@dataclass(frozen=True)
class RetryableFailure:
    reason: str
    rate_limited: bool = False
    retry_after: Optional[float] = None  # seconds, from a Retry-After header


@dataclass(frozen=True)
class FatalFailure:
    reason: str
    status_code: Optional[int] = None


FetchOutcome = Union[FetchSuccess, RetryableFailure, FatalFailure]


class FeedSourcePort(Protocol):
    def partitions(self) -> list[FeedPartition]:
        """Return the feed partitions in processing order (the rolling delta last)."""
        ...

    def fetch(self, url: str) -> FetchOutcome:
        """Perform a single GET attempt and classify the result. Never raises for HTTP or I/O errors."""
        ...

    def parse_last_modified(self, meta: bytes) -> int:
        """Return the upstream last-modified timestamp (epoch seconds) from partition metadata."""
        ...

    def parse_records(self, content: bytes) -> Iterator[Vulnerability]:
        """Yield the vulnerability records of a downloaded partition."""
        ...
