from __future__ import annotations

import json

import pytest

from cve_matcher.core.domain.cpe import Cpe
from cve_matcher.core.domain.enums import Severity
from cve_matcher.core.domain.models import CvssScore, Vulnerability, VulnerableSoftware
from cve_matcher.core.errors import ExceptionCollection, NoDataError
from cve_matcher.core.ports.feed_port import RetryableFailure
from cve_matcher.core.ports.lock_port import LockMode
from cve_matcher.core.services.downloader import Downloader
from cve_matcher.core.services.identifier_matcher import IdentifierMatcher
from cve_matcher.core.services.suppression import SuppressionRule
from cve_matcher.core.usecases.analyze_artifacts import AnalyzeArtifactsUseCase
from cve_matcher.core.usecases.update_database import UpdateDatabaseUseCase
from cve_matcher.infra.memory_index import InMemoryCandidateIndex
from cve_matcher.infra.sqlite_database import SqliteVulnerabilityDatabase

STRUTS_RECORD = Vulnerability(
    name="CVE-2017-5638",
    description="Jakarta Multipart parser remote code execution",
    cvss=(CvssScore("3.1", 10.0, Severity.CRITICAL),),
    software=(VulnerableSoftware(
        cpe=Cpe.parse("cpe:2.3:a:apache:struts2:*:*:*:*:*:*:*:*"),
        version_start_including="2.3.5",
        version_end_excluding="2.3.32",
    ),),
)


class LockLog:
    def __init__(self):
        self.entries = []

    def __call__(self, mode):
        log = self.entries

        class _Lock:
            def acquire(self):
                log.append(("acquire", mode))

            def release(self):
                log.append(("release", mode))

            def __enter__(self):
                self.acquire()
                return self

            def __exit__(self, *exc):
                self.release()

        return _Lock()


@pytest.fixture
def db(tmp_path):
    with SqliteVulnerabilityDatabase(tmp_path / "vulns.db") as database:
        yield database


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    pkg = root / "node_modules" / "struts2"
    pkg.mkdir(parents=True)
    (pkg / "package.json").write_text(json.dumps({"name": "struts2", "version": "2.3.31", "author": "Apache"}))
    (root / "README.txt").write_text("nothing to see")
    return root


def _analyze(db, index, **kwargs):
    return AnalyzeArtifactsUseCase(db, index, IdentifierMatcher(index), **kwargs)


def test_empty_database_without_update_is_no_data(db, project):
    index = InMemoryCandidateIndex(db)
    with pytest.raises(NoDataError):
        _analyze(db, index, auto_update=False).execute([project])


def test_no_paths_is_rejected(db):
    with pytest.raises(ValueError):
        _analyze(db, InMemoryCandidateIndex(db), auto_update=False).execute([])


def test_scan_reports_vulnerability_under_shared_lock(db, project):
    db.upsert_record(STRUTS_RECORD)
    index = InMemoryCandidateIndex(db)
    locks = LockLog()

    deps = _analyze(db, index, auto_update=False, lock_factory=locks).execute([project])

    assert locks.entries == [("acquire", LockMode.SHARED), ("release", LockMode.SHARED)]
    manifest = next(d for d in deps if d.file_name == "package.json")
    assert [i.value for i in manifest.identifiers] == ["cpe:2.3:a:apache:struts2:2.3.31:*:*:*:*:*:*:*"]
    assert [v.name for v in manifest.vulnerabilities] == ["CVE-2017-5638"]
    assert manifest.vulnerabilities[0].severity is Severity.CRITICAL
    readme = next(d for d in deps if d.file_name == "README.txt")
    assert readme.vulnerabilities == []


def test_data_is_checked_while_shared_lock_is_held(db, project):
    db.upsert_record(STRUTS_RECORD)
    index = InMemoryCandidateIndex(db)
    locks = LockLog()

    def purged_while_waiting(mode):
        lock = locks(mode)
        acquire = lock.acquire

        def acquire_after_purge():
            db.purge()
            acquire()

        lock.acquire = acquire_after_purge
        return lock

    with pytest.raises(NoDataError):
        _analyze(db, index, auto_update=False, lock_factory=purged_while_waiting).execute([project])
    assert locks.entries == [("acquire", LockMode.SHARED), ("release", LockMode.SHARED)]


def test_configured_and_per_call_suppressions_are_combined(db, project):
    db.upsert_record(STRUTS_RECORD)
    index = InMemoryCandidateIndex(db)
    uc = _analyze(
        db, index,
        auto_update=False,
        suppression_rules=[SuppressionRule(cve=("CVE-2099-0001",))],
    )

    deps = uc.execute([project], suppression_rules=[SuppressionRule(cve=("CVE-2017-5638",), notes="patched")])

    manifest = next(d for d in deps if d.file_name == "package.json")
    assert manifest.vulnerabilities == []
    assert [(v.name, v.notes) for v in manifest.suppressed_vulnerabilities] == [("CVE-2017-5638", "patched")]


def test_auto_update_populates_database_before_scan(db, project, fake_feed_source, clock):
    source = fake_feed_source(["2017"])
    source.publish("2017", 1000, [STRUTS_RECORD])
    index = InMemoryCandidateIndex()
    update = UpdateDatabaseUseCase(db, index, source, Downloader(source, clock=clock), clock=clock)

    deps = _analyze(db, index, update=update).execute([project])

    manifest = next(d for d in deps if d.file_name == "package.json")
    assert [v.name for v in manifest.vulnerabilities] == ["CVE-2017-5638"]


def test_partial_update_failure_is_reported_with_results(db, project, fake_feed_source, clock):
    source = fake_feed_source(["2016", "2017"])
    source.publish("2016", 1000, [])
    source.publish("2017", 1000, [STRUTS_RECORD])
    source.files[source.url("2016")] = [RetryableFailure("connection reset")]
    index = InMemoryCandidateIndex()
    update = UpdateDatabaseUseCase(
        db, index, source, Downloader(source, clock=clock, max_attempts=2), clock=clock,
    )

    with pytest.raises(ExceptionCollection) as exc_info:
        _analyze(db, index, update=update).execute([project])

    err = exc_info.value
    assert not err.fatal
    manifest = next(d for d in err.result if d.file_name == "package.json")
    assert [v.name for v in manifest.vulnerabilities] == ["CVE-2017-5638"]
