from __future__ import annotations

from typing import Protocol, Sequence

from ..domain.models import CandidateEntry
from .database_port import VulnerabilityDatabasePort


class CandidateIndexPort(Protocol):
    def rebuild(self, database: VulnerabilityDatabasePort) -> int:
        """Clear and repopulate from every (vendor, product) pair in the database.

        Returns the number of indexed candidates.
        """
        ...

    def search(self, query_terms: Sequence[str], max_results: int) -> list[CandidateEntry]:
        """Return up to max_results candidates matching any query term, best first.

        Raises ValueError when the query is empty or normalizes to nothing.
        """
        ...

    def search_vendor_product(
        self,
        vendor_terms: Sequence[str],
        product_terms: Sequence[str],
        max_results: int,
    ) -> list[CandidateEntry]:
        """Return candidates matching at least one vendor term and at least one product term."""
        ...

    def num_docs(self) -> int:
        ...

    def close(self) -> None:
        ...
