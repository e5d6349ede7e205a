from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Protocol

from ..domain.models import Identifier, Vulnerability


class VulnerabilityDatabasePort(Protocol):
    def upsert_record(self, record: Vulnerability) -> None:
        """Insert the record, replacing any existing record with the same name."""

    def get_record(self, name: str) -> Vulnerability | None:
        ...

    def delete_record(self, name: str) -> bool:
        ...

    def get_vulnerabilities(self, identifier: Identifier) -> list[Vulnerability]:
        """Return records whose affected software covers the identifier's vendor, product and version."""
        ...

    def all_vendor_product_pairs(self) -> set[tuple[str, str]]:
        ...

    def data_exists(self) -> bool:
        ...

    def get_property(self, key: str) -> str | None:
        ...

    def set_property(self, key: str, value: str) -> None:
        ...

    def get_properties(self) -> dict[str, str]:
        ...

    def cleanup_database(self) -> int:
        """Remove orphaned rows; return how many records were deleted."""
        ...

    def transaction(self) -> AbstractContextManager[None]:
        """Commit everything done inside the block, or nothing."""
        ...

    def purge(self) -> None:
        """Delete all persisted data."""
        ...
