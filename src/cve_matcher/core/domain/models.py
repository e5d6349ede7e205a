from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Optional

from .cpe import ANY, NA, Cpe
from .enums import Confidence, PartitionState, Severity
from .evidence import Evidence, EvidenceCollection
from .version import DependencyVersion, version_in_range


@dataclass(frozen=True)
class CvssScore:
    version: str  # "2.0", "3.1", "4.0"
    base_score: float = -1.0  # -1 when unknown
    severity: Optional[Severity] = None
    vector: Optional[str] = None


@dataclass(frozen=True)
class Reference:
    url: str
    source: Optional[str] = None
    tags: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class VulnerableSoftware:
    cpe: Cpe
    version_start_including: Optional[str] = None
    version_start_excluding: Optional[str] = None
    version_end_including: Optional[str] = None
    version_end_excluding: Optional[str] = None
    vulnerable: bool = True

    @property
    def vendor(self) -> str:
        return self.cpe.vendor

    @property
    def product(self) -> str:
        return self.cpe.product

    @property
    def has_range(self) -> bool:
        return any((
            self.version_start_including,
            self.version_start_excluding,
            self.version_end_including,
            self.version_end_excluding,
        ))

    def matches_version(self, version: Optional[DependencyVersion]) -> bool:
        """Return True if the given version falls in this entry's affected range.

        An unknown version only matches entries that cover every version.
        """
        cpe_version = self.cpe.version.replace("\\", "")
        open_version = cpe_version in (ANY, NA, "")
        if version is None:
            return open_version and not self.has_range
        if not open_version and DependencyVersion(cpe_version) != version:
            return False
        return version_in_range(
            version,
            start_including=self.version_start_including,
            start_excluding=self.version_start_excluding,
            end_including=self.version_end_including,
            end_excluding=self.version_end_excluding,
        )


@dataclass(frozen=True)
class Vulnerability:
    name: str  # e.g. CVE-2017-5638
    description: Optional[str] = None

    cvss: tuple[CvssScore, ...] = field(default_factory=tuple)
    cwes: tuple[str, ...] = field(default_factory=tuple)
    references: tuple[Reference, ...] = field(default_factory=tuple)
    software: tuple[VulnerableSoftware, ...] = field(default_factory=tuple)

    published_at: Optional[datetime] = None
    last_modified_at: Optional[datetime] = None
    rejected: bool = False

    notes: Optional[str] = field(default=None, compare=False)

    @property
    def highest_score(self) -> float:
        return max((s.base_score for s in self.cvss), default=-1.0)

    @property
    def severity(self) -> Optional[Severity]:
        best: Optional[CvssScore] = None
        for score in self.cvss:
            if best is None or score.base_score > best.base_score:
                best = score
        return best.severity if best else None

    def score_for(self, major_version: str) -> Optional[float]:
        """Return the base score of the given CVSS major version ("2", "3" or "4")."""
        for score in self.cvss:
            if score.version.split(".")[0] == major_version and score.base_score >= 0:
                return score.base_score
        return None

    def with_updates(self, **kwargs) -> "Vulnerability":
        return replace(self, **kwargs)


@dataclass(frozen=True)
class CandidateEntry:
    vendor: str
    product: str
    document_id: int = field(default=-1, compare=False)
    search_score: float = field(default=0.0, compare=False)


@dataclass(frozen=True)
class Identifier:
    cpe: Cpe
    confidence: Confidence
    score: float = 0.0
    used_evidence: tuple[Evidence, ...] = field(default_factory=tuple, compare=False)
    notes: Optional[str] = field(default=None, compare=False)

    @property
    def value(self) -> str:
        return self.cpe.to_cpe23()

    @property
    def version(self) -> Optional[DependencyVersion]:
        if self.cpe.version in (ANY, NA, ""):
            return None
        return DependencyVersion(self.cpe.version.replace("\\", ""))

    def with_updates(self, **kwargs) -> "Identifier":
        return replace(self, **kwargs)


@dataclass
class FeedPartition:
    id: str
    url: str
    meta_url: str
    last_modified: Optional[int] = None  # epoch seconds reported upstream
    needs_update: bool = False
    state: PartitionState = PartitionState.CHECKING
    error: Optional[BaseException] = field(default=None, compare=False)


@dataclass
class Dependency:
    """A scanned artifact and everything collected about it."""

    file_path: Path
    sha1: str = ""
    sha256: str = ""
    evidence: EvidenceCollection = field(default_factory=EvidenceCollection)
    software_identifiers: list[str] = field(default_factory=list)

    identifiers: list[Identifier] = field(default_factory=list)
    vulnerabilities: list[Vulnerability] = field(default_factory=list)
    suppressed_identifiers: list[Identifier] = field(default_factory=list)
    suppressed_vulnerabilities: list[Vulnerability] = field(default_factory=list)

    # paths of byte-identical artifacts folded into this one
    related_ids: set[str] = field(default_factory=set)

    @property
    def id(self) -> str:
        return self.sha1 or str(self.file_path)

    @property
    def file_name(self) -> str:
        return self.file_path.name

    def add_vulnerability(self, vulnerability: Vulnerability) -> None:
        if all(v.name != vulnerability.name for v in self.vulnerabilities):
            self.vulnerabilities.append(vulnerability)

    def merge(self, other: "Dependency") -> None:
        """Fold a byte-identical artifact into this one, keeping only its id."""
        self.evidence.merge(other.evidence)
        for sid in other.software_identifiers:
            if sid not in self.software_identifiers:
                self.software_identifiers.append(sid)
        self.related_ids.add(str(other.file_path))
        self.related_ids.update(other.related_ids)
