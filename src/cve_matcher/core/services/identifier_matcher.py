from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from ..domain.cpe import ANY, Cpe
from ..domain.enums import Confidence, EvidenceType
from ..domain.evidence import Evidence, EvidenceCollection
from ..domain.models import CandidateEntry, Identifier
from ..domain.version import DependencyVersion, parse_version
from ..ports.index_port import CandidateIndexPort
from ...shared.text import cleanse, normalize, tokenize

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS: Mapping[Confidence, float] = {
    Confidence.HIGH: 3.0,
    Confidence.MEDIUM: 2.0,
    Confidence.LOW: 1.0,
}


@dataclass(frozen=True)
class MatcherSettings:
    weights: Mapping[Confidence, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    min_score: float = 1.0
    max_results: int = 25

    def __post_init__(self) -> None:
        high = self.weights[Confidence.HIGH]
        medium = self.weights[Confidence.MEDIUM]
        low = self.weights[Confidence.LOW]
        if not high > medium > low > 0:
            raise ValueError("Confidence weights must satisfy HIGH > MEDIUM > LOW > 0")
        if high < 2 * low:
            raise ValueError("HIGH confidence weight must be at least twice the LOW weight")
        if self.max_results < 1:
            raise ValueError("max_results must be at least 1")


@dataclass(frozen=True)
class RankedCandidate:
    entry: CandidateEntry
    score: float  # sum of weights of distinct overlapping evidence values
    total_weight: float  # sum over every overlapping tuple, duplicates included
    match_fraction: float  # matched tokens / (candidate tokens | overlapping evidence tokens)
    used: tuple[tuple[EvidenceType, Evidence], ...]

    @property
    def rank_key(self) -> tuple[float, float, float, int]:
        return (-self.score, -self.total_weight, -self.match_fraction, self.entry.document_id)

    def ties_with(self, other: "RankedCandidate") -> bool:
        return self.rank_key[:3] == other.rank_key[:3]


class IdentifierMatcher:
    """Select the best-fit CPE identifiers for one artifact's evidence."""

    def __init__(self, index: CandidateIndexPort, settings: Optional[MatcherSettings] = None) -> None:
        self._index = index
        self._settings = settings or MatcherSettings()

    def _weight(self, confidence: Confidence) -> float:
        return self._settings.weights[confidence]

    @staticmethod
    def _terms(values: list[str]) -> list[str]:
        return [v for v in values if tokenize(v)]

    def rank(self, evidence: EvidenceCollection, version: Optional[DependencyVersion] = None) -> list[RankedCandidate]:
        """Score every verified candidate, best first. Empty when evidence is missing."""
        vendor_evidence = evidence.all(EvidenceType.VENDOR)
        product_evidence = evidence.all(EvidenceType.PRODUCT)

        vendor_terms = self._terms([cleanse(e.value) for e in vendor_evidence])
        product_values = [cleanse(e.value) for e in product_evidence]
        if version is not None and version.major.isdigit():
            product_values += [f"{v}{version.major}" for v in product_values if v]
        product_terms = self._terms(product_values)

        if not vendor_terms or not product_terms:
            logger.debug("Not enough vendor/product evidence to search for candidates")
            return []

        candidates = self._index.search_vendor_product(vendor_terms, product_terms, self._settings.max_results)
        ranked = [
            r for r in (self._score(c, vendor_evidence, product_evidence) for c in candidates)
            if r is not None
        ]
        ranked.sort(key=lambda r: r.rank_key)
        return ranked

    def _score(
        self,
        candidate: CandidateEntry,
        vendor_evidence: tuple[Evidence, ...],
        product_evidence: tuple[Evidence, ...],
    ) -> Optional[RankedCandidate]:
        cand_vendor = set(tokenize(candidate.vendor))
        cand_product = set(tokenize(candidate.product))
        cand_tokens = cand_vendor | cand_product

        distinct: dict[str, float] = {}
        total_weight = 0.0
        matched: set[str] = set()
        seen: set[str] = set()
        used: list[tuple[EvidenceType, Evidence]] = []
        vendor_verified = product_verified = False

        buckets = ((EvidenceType.VENDOR, vendor_evidence), (EvidenceType.PRODUCT, product_evidence))
        for bucket, items in buckets:
            for e in items:
                ev_tokens = set(tokenize(cleanse(e.value)))
                overlap = ev_tokens & cand_tokens
                if not overlap:
                    continue
                if bucket is EvidenceType.VENDOR and ev_tokens & cand_vendor:
                    vendor_verified = True
                if bucket is EvidenceType.PRODUCT and ev_tokens & cand_product:
                    product_verified = True
                weight = self._weight(e.confidence)
                key = normalize(cleanse(e.value))
                distinct[key] = max(distinct.get(key, 0.0), weight)
                total_weight += weight
                matched |= overlap
                seen |= ev_tokens
                used.append((bucket, e))

        if not (vendor_verified and product_verified):
            return None
        universe = cand_tokens | seen
        return RankedCandidate(
            entry=candidate,
            score=sum(distinct.values()),
            total_weight=total_weight,
            match_fraction=len(matched) / len(universe) if universe else 0.0,
            used=tuple(used),
        )

    @staticmethod
    def best_version(evidence: EvidenceCollection) -> tuple[Optional[DependencyVersion], Optional[Evidence]]:
        """Pick the version from the most confident version evidence that parses."""
        items = sorted(evidence.all(EvidenceType.VERSION), key=lambda e: -e.confidence.rank)
        for e in items:
            version = parse_version(e.value, first_match_only=True)
            if version is not None and str(version) != "-":
                return version, e
        return None, None

    def match(self, evidence: EvidenceCollection) -> list[Identifier]:
        """Return the best-fit identifiers and mark the evidence that produced them."""
        version, version_evidence = self.best_version(evidence)
        ranked = self.rank(evidence, version)
        if not ranked:
            return []

        best = ranked[0]
        if best.score <= self._settings.min_score:
            logger.debug(
                f"Best candidate {best.entry.vendor}:{best.entry.product} scored {best.score}, "
                f"not above the floor {self._settings.min_score}"
            )
            return []

        winners = [r for r in ranked if r.ties_with(best)]
        identifiers: list[Identifier] = []
        for r in winners:
            used = list(r.used)
            if version_evidence is not None:
                used.append((EvidenceType.VERSION, version_evidence))
            for bucket, e in used:
                evidence.mark_used(bucket, e)
            confidence = max((e.confidence for _, e in r.used), key=lambda c: c.rank)
            cpe = Cpe(part="a", vendor=r.entry.vendor, product=r.entry.product, version=str(version) if version else ANY)
            identifiers.append(Identifier(
                cpe=cpe,
                confidence=confidence,
                score=r.score,
                used_evidence=tuple(e for _, e in used),
            ))
        logger.debug(f"Matched {[i.value for i in identifiers]}")
        return identifiers
