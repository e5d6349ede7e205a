from __future__ import annotations

from cve_matcher.core.domain.enums import Severity
from cve_matcher.shared.severity import (
	base_score_from_vector,
	map_score_to_severity,
	map_v2_score_to_severity,
	resolve_severity,
)


def test_v3_bands():
	assert map_score_to_severity(10.0) is Severity.CRITICAL
	assert map_score_to_severity(7.5) is Severity.HIGH
	assert map_score_to_severity(5.0) is Severity.MEDIUM
	assert map_score_to_severity(0.1) is Severity.LOW
	assert map_score_to_severity(0.0) is None


def test_v2_has_no_critical_band():
	assert map_v2_score_to_severity(10.0) is Severity.HIGH


def test_base_score_from_v3_vector():
	assert base_score_from_vector("CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H") == 9.8


def test_base_score_from_v2_vector():
	assert base_score_from_vector("AV:N/AC:L/Au:N/C:C/I:C/A:C") == 10.0


def test_base_score_from_invalid_vector_is_none():
	assert base_score_from_vector("CVSS:3.1/AV:X") is None
	assert base_score_from_vector("CVSS:4.0/AV:N/AC:L/AT:N/PR:N/UI:N/VC:H/VI:H/VA:H/SC:N/SI:N/SA:N") is None


def test_resolve_severity_prefers_feed_label():
	assert resolve_severity("3.1", 9.8, "HIGH") is Severity.HIGH
	assert resolve_severity("3.1", 9.8, None) is Severity.CRITICAL
	assert resolve_severity("2.0", 9.8, None) is Severity.HIGH
	assert resolve_severity("3.1", -1.0, None) is Severity.UNKNOWN
