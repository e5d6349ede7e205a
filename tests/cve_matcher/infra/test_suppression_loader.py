from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from cve_matcher.core.errors import SuppressionParseError
from cve_matcher.infra.suppression_loader import load_suppressions, parse_suppressions


def test_parse_full_rule():
    doc = {
        "suppressions": [{
            "notes": "struts is not exposed",
            "filePath": {"value": ".*/struts2-core-.*\\.jar", "regex": True},
            "gav": "pkg:maven/org.apache.struts/struts2-core@2.3.31",
            "cpe": ["cpe:2.3:a:apache:struts:"],
            "cve": ["CVE-2017-5638"],
            "cwe": ["20"],
            "cvssBelow": [4.0],
            "vulnerabilityName": [{"value": "GHSA-.*", "regex": True, "caseSensitive": True}],
            "base": True,
        }]
    }
    [rule] = parse_suppressions(json.dumps(doc))

    assert rule.notes == "struts is not exposed"
    assert rule.file_path.regex and rule.file_path.matches("/app/lib/struts2-core-2.3.31.jar")
    assert rule.gav.value == "pkg:maven/org.apache.struts/struts2-core@2.3.31"
    assert rule.cpe[0].value == "cpe:2.3:a:apache:struts:"
    assert rule.cve == ("CVE-2017-5638",)
    assert rule.cwe == ("20",)
    assert rule.cvss_below == (4.0,)
    assert rule.vulnerability_name[0].case_sensitive is True
    assert rule.base is True


def test_until_date_is_midnight_utc():
    [rule] = parse_suppressions('{"suppressions": [{"cve": ["CVE-2017-5638"], "until": "2020-01-01"}]}')
    assert rule.is_expired(datetime(2020, 1, 1, 0, 0, 1, tzinfo=timezone.utc))
    assert not rule.is_expired(datetime(2019, 12, 31, 23, 59, tzinfo=timezone.utc))


@pytest.mark.parametrize("content", [
    "not json",
    '{"suppressions": [{"cve": "CVE-2017-5638"}]}',
    '{"suppressions": [{"cve": ["CVE-2017-5638"], "unknown": 1}]}',
    '{"suppressions": [{"sha1": "abc", "cve": ["CVE-2017-5638"]}]}',
    '{"suppressions": [{"vulnerabilityName": [{"value": "(", "regex": true}]}]}',
    '{"suppressions": [{"notes": "nothing to match"}]}',
])
def test_invalid_documents_are_rejected(content):
    with pytest.raises(SuppressionParseError):
        parse_suppressions(content)


def test_load_from_file(tmp_path):
    path = tmp_path / "suppressions.json"
    path.write_text('{"suppressions": [{"cve": ["CVE-2017-5638"]}]}')
    assert len(load_suppressions(path)) == 1


def test_missing_file(tmp_path):
    with pytest.raises(SuppressionParseError):
        load_suppressions(tmp_path / "missing.json")
