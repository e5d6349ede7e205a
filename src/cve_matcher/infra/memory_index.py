from __future__ import annotations

import logging
import threading
from collections import Counter
from typing import Optional, Sequence

from ..core.domain.models import CandidateEntry
from ..core.errors import IndexUnavailableError
from ..core.ports.database_port import VulnerabilityDatabasePort
from ..core.ports.index_port import CandidateIndexPort
from ..shared.text import tokenize

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 25


class InMemoryCandidateIndex(CandidateIndexPort):
    """Inverted index over (vendor, product) pairs.

    Scoring counts distinct query tokens present in a document. Document
    frequency, term frequency and field length play no part, so a common vendor
    name never scores lower than a rare one. Equal scores keep document order.
    """

    def __init__(self, database: Optional[VulnerabilityDatabasePort] = None) -> None:
        self._lock = threading.RLock()
        self._source = database
        self._entries: Optional[list[CandidateEntry]] = None
        self._vendor_postings: dict[str, set[int]] = {}
        self._product_postings: dict[str, set[int]] = {}

    # building -------------------------------------------------------------

    def _reset(self) -> None:
        self._entries = []
        self._vendor_postings = {}
        self._product_postings = {}

    def rebuild(self, database: Optional[VulnerabilityDatabasePort] = None) -> int:
        source = database or self._source
        if source is None:
            raise IndexUnavailableError("No vulnerability database to build the candidate index from")
        pairs = sorted(source.all_vendor_product_pairs())
        with self._lock:
            self._source = source
            self._reset()
            for vendor, product in pairs:
                self._add(vendor, product)
            logger.info("Candidate index built with %d entries", len(pairs))
            return len(pairs)

    def add(self, vendor: str, product: str) -> CandidateEntry:
        """Add one pair; opens an empty index if needed. Duplicate pairs return the existing entry."""
        with self._lock:
            if self._entries is None:
                self._reset()
            assert self._entries is not None
            for entry in self._entries:
                if entry.vendor == vendor and entry.product == product:
                    return entry
            return self._add(vendor, product)

    def _add(self, vendor: str, product: str) -> CandidateEntry:
        assert self._entries is not None
        doc_id = len(self._entries)
        entry = CandidateEntry(vendor=vendor, product=product, document_id=doc_id)
        vendor_tokens = frozenset(tokenize(vendor))
        product_tokens = frozenset(tokenize(product))
        self._entries.append(entry)
        for token in vendor_tokens:
            self._vendor_postings.setdefault(token, set()).add(doc_id)
        for token in product_tokens:
            self._product_postings.setdefault(token, set()).add(doc_id)
        return entry

    # lifecycle ------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._entries is not None

    def _ensure_open(self) -> None:
        if self._entries is not None:
            return
        if self._source is None:
            raise IndexUnavailableError("Candidate index is closed")
        logger.info("Candidate index was closed; reopening")
        self.rebuild(self._source)

    def close(self) -> None:
        with self._lock:
            self._entries = None
            self._vendor_postings = {}
            self._product_postings = {}

    def num_docs(self) -> int:
        with self._lock:
            self._ensure_open()
            assert self._entries is not None
            return len(self._entries)

    # searching ------------------------------------------------------------

    @staticmethod
    def _query_tokens(query_terms: Sequence[str]) -> list[str]:
        if not query_terms or not any(t.strip() for t in query_terms):
            raise ValueError("Empty search query")
        tokens = tokenize(" ".join(query_terms))
        if not tokens:
            raise ValueError(f"Search query has no searchable terms: {list(query_terms)!r}")
        return tokens

    @staticmethod
    def _hits(tokens: Sequence[str], postings: dict[str, set[int]]) -> Counter[int]:
        hits: Counter[int] = Counter()
        for token in tokens:
            for doc_id in postings.get(token, ()):
                hits[doc_id] += 1
        return hits

    def _ranked(self, scores: Counter[int], max_results: int) -> list[CandidateEntry]:
        assert self._entries is not None
        ordered = sorted(scores.items(), key=lambda item: (-item[1], item[0]))[:max_results]
        return [
            CandidateEntry(
                vendor=self._entries[doc_id].vendor,
                product=self._entries[doc_id].product,
                document_id=doc_id,
                search_score=float(score),
            )
            for doc_id, score in ordered
        ]

    def search(self, query_terms: Sequence[str], max_results: int = DEFAULT_MAX_RESULTS) -> list[CandidateEntry]:
        if max_results < 1:
            raise ValueError("max_results must be at least 1")
        tokens = self._query_tokens(query_terms)
        with self._lock:
            self._ensure_open()
            scores: Counter[int] = Counter()
            for token in tokens:
                docs = self._vendor_postings.get(token, set()) | self._product_postings.get(token, set())
                for doc_id in docs:
                    scores[doc_id] += 1
            return self._ranked(scores, max_results)

    def search_vendor_product(
        self,
        vendor_terms: Sequence[str],
        product_terms: Sequence[str],
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> list[CandidateEntry]:
        if max_results < 1:
            raise ValueError("max_results must be at least 1")
        vendor_tokens = self._query_tokens(vendor_terms)
        product_tokens = self._query_tokens(product_terms)
        with self._lock:
            self._ensure_open()
            vendor_hits = self._hits(vendor_tokens, self._vendor_postings)
            product_hits = self._hits(product_tokens, self._product_postings)
            scores: Counter[int] = Counter({
                doc_id: vendor_hits[doc_id] + product_hits[doc_id]
                for doc_id in vendor_hits.keys() & product_hits.keys()
            })
            logger.debug("Vendor/product query %s / %s matched %d candidates", vendor_tokens, product_tokens, len(scores))
            return self._ranked(scores, max_results)
