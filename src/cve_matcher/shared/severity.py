from __future__ import annotations

from typing import Optional

from cvss import CVSS2, CVSS3
from cvss.exceptions import CVSSError

from ..core.domain.enums import Severity


def map_score_to_severity(score: float) -> Optional[Severity]:
	if score >= 9.0:
		return Severity.CRITICAL
	if score >= 7.0:
		return Severity.HIGH
	if score >= 4.0:
		return Severity.MEDIUM
	if score > 0.0:
		return Severity.LOW
	return None


def map_v2_score_to_severity(score: float) -> Optional[Severity]:
	"""CVSS v2 has no CRITICAL band."""
	if score >= 7.0:
		return Severity.HIGH
	if score >= 4.0:
		return Severity.MEDIUM
	if score >= 0.0:
		return Severity.LOW
	return None


def base_score_from_vector(vector: str) -> Optional[float]:
	"""Compute a base score from a CVSS v2 or v3.x vector via the cvss library.

	Returns None for vectors the library cannot score (including v4.0).
	"""
	v = vector.strip()
	try:
		if v.upper().startswith("CVSS:3"):
			return float(CVSS3(v).scores()[0])
		if v.upper().startswith("CVSS:"):
			return None
		return float(CVSS2(v).scores()[0])
	except CVSSError:
		return None


def resolve_severity(version: str, base_score: float, label: Optional[str]) -> Optional[Severity]:
	"""Pick the severity band for a score: the feed's own label wins, else thresholds."""
	if label:
		sev = Severity.from_str(label)
		if sev is not None:
			return sev
	if base_score < 0:
		return Severity.UNKNOWN
	if version.startswith("2"):
		return map_v2_score_to_severity(base_score)
	return map_score_to_severity(base_score)
