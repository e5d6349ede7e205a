from __future__ import annotations

from typing import Iterable, Protocol


class CachePort(Protocol):
    """Byte store for downloaded feed files, keyed like "feed:<file name>@<upstream timestamp>"."""

    def get(self, key: str) -> bytes | None:
        """Return the stored payload, or None once it is missing or past its TTL."""

    def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        """Store a payload; ttl_seconds=None uses the store default, 0 keeps it until cleared."""

    def clear(self, prefix: str | None = None) -> None:
        """Remove every entry, or only the keys starting with prefix."""

    def iter_keys(self, prefix: str) -> Iterable[str]:
        """Yield the stored keys starting with prefix."""
        ...
