from __future__ import annotations

from enum import Enum
from typing import Optional


class Confidence(Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @classmethod
    def from_str(cls, value: str) -> "Confidence":
        """Parse a confidence label case-insensitively; HIGHEST is folded into HIGH."""
        u = value.strip().upper()
        if u == "HIGHEST":
            return cls.HIGH
        try:
            return cls[u]
        except KeyError:
            raise ValueError(f"Unknown confidence level: {value!r}") from None

    @property
    def rank(self) -> int:
        return {Confidence.HIGH: 3, Confidence.MEDIUM: 2, Confidence.LOW: 1}[self]


class EvidenceType(Enum):
    VENDOR = "vendor"
    PRODUCT = "product"
    VERSION = "version"


class Severity(Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_str(cls, value: str) -> Optional["Severity"]:
        """Parse a severity label (case-insensitive). MODERATE maps to MEDIUM."""
        s = value.strip()
        if not s:
            return None
        u = s.upper()
        label_map = {
            "CRITICAL": cls.CRITICAL,
            "HIGH": cls.HIGH,
            "MEDIUM": cls.MEDIUM,
            "MODERATE": cls.MEDIUM,
            "LOW": cls.LOW,
            "NONE": cls.UNKNOWN,
            "UNKNOWN": cls.UNKNOWN,
        }
        return label_map.get(u)


class PartitionState(Enum):
    CHECKING = "CHECKING"
    NONE_NEEDED = "NONE_NEEDED"
    DOWNLOADING = "DOWNLOADING"
    PROCESSING = "PROCESSING"
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (PartitionState.NONE_NEEDED, PartitionState.COMMITTED, PartitionState.FAILED)


class AnalysisPhase(Enum):
    INFORMATION_COLLECTION = 1
    IDENTIFIER_ANALYSIS = 2
    FINDING_ANALYSIS = 3
    FINAL = 4
