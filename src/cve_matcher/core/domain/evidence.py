from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from .enums import Confidence, EvidenceType


@dataclass(frozen=True)
class Evidence:
    source: str
    name: str
    value: str
    confidence: Confidence


class EvidenceCollection:
    """Per-artifact evidence, split into vendor/product/version buckets.

    Buckets are append-only multisets: nothing is deduplicated and insertion
    order is kept for diagnostics. The "used" marker lives beside the tuples so
    the tuples themselves stay immutable.
    """

    def __init__(self) -> None:
        self._buckets: dict[EvidenceType, list[Evidence]] = {t: [] for t in EvidenceType}
        self._used: dict[EvidenceType, set[Evidence]] = {t: set() for t in EvidenceType}

    def add(
        self,
        bucket: EvidenceType,
        source: str,
        name: str,
        value: str,
        confidence: Confidence,
    ) -> Evidence:
        evidence = Evidence(source=source, name=name, value=value, confidence=confidence)
        self._buckets[bucket].append(evidence)
        return evidence

    def add_evidence(self, bucket: EvidenceType, evidence: Evidence) -> None:
        self._buckets[bucket].append(evidence)

    def all(self, bucket: EvidenceType) -> tuple[Evidence, ...]:
        return tuple(self._buckets[bucket])

    def mark_used(self, bucket: EvidenceType, evidence: Evidence) -> None:
        self._used[bucket].add(evidence)

    def is_used(self, bucket: EvidenceType, evidence: Evidence) -> bool:
        return evidence in self._used[bucket]

    def used(self, bucket: EvidenceType) -> tuple[Evidence, ...]:
        return tuple(e for e in self._buckets[bucket] if e in self._used[bucket])

    def merge(self, other: "EvidenceCollection") -> None:
        """Append every tuple of other, keeping its used markers."""
        for bucket in EvidenceType:
            self._buckets[bucket].extend(other._buckets[bucket])
            self._used[bucket].update(other._used[bucket])

    def __iter__(self) -> Iterator[tuple[EvidenceType, Evidence]]:
        for bucket in EvidenceType:
            for evidence in self._buckets[bucket]:
                yield bucket, evidence

    def __len__(self) -> int:
        return sum(len(v) for v in self._buckets.values())
