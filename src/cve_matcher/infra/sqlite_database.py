"""sqlite3-backed vulnerability database."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from ..core.domain.cpe import Cpe
from ..core.domain.enums import Severity
from ..core.domain.models import CvssScore, Identifier, Reference, VulnerableSoftware, Vulnerability
from ..core.errors import DatabaseError, DatabaseUnavailableError
from ..core.ports.database_port import VulnerabilityDatabasePort

logger = logging.getLogger(__name__)

DB_SCHEMA_VERSION = "1.0"
DB_FILE_NAME = "cve_matcher.db"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS properties (
    id TEXT PRIMARY KEY,
    value TEXT
);
CREATE TABLE IF NOT EXISTS vulnerability (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cve TEXT NOT NULL UNIQUE,
    description TEXT,
    published TEXT,
    last_modified TEXT
);
CREATE TABLE IF NOT EXISTS cvss (
    vulnerability_id INTEGER NOT NULL REFERENCES vulnerability(id) ON DELETE CASCADE,
    version TEXT NOT NULL,
    base_score REAL NOT NULL,
    severity TEXT,
    vector TEXT
);
CREATE TABLE IF NOT EXISTS cwe (
    vulnerability_id INTEGER NOT NULL REFERENCES vulnerability(id) ON DELETE CASCADE,
    cwe TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS vuln_reference (
    vulnerability_id INTEGER NOT NULL REFERENCES vulnerability(id) ON DELETE CASCADE,
    url TEXT NOT NULL,
    source TEXT,
    tags TEXT
);
CREATE TABLE IF NOT EXISTS software (
    vulnerability_id INTEGER NOT NULL REFERENCES vulnerability(id) ON DELETE CASCADE,
    cpe TEXT NOT NULL,
    vendor TEXT NOT NULL,
    product TEXT NOT NULL,
    version_start_including TEXT,
    version_start_excluding TEXT,
    version_end_including TEXT,
    version_end_excluding TEXT,
    vulnerable INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_software_vendor_product ON software(vendor, product);
CREATE INDEX IF NOT EXISTS idx_software_vulnerability ON software(vulnerability_id);
CREATE INDEX IF NOT EXISTS idx_cvss_vulnerability ON cvss(vulnerability_id);
CREATE INDEX IF NOT EXISTS idx_cwe_vulnerability ON cwe(vulnerability_id);
CREATE INDEX IF NOT EXISTS idx_reference_vulnerability ON vuln_reference(vulnerability_id);
"""


def _fmt_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SqliteVulnerabilityDatabase(VulnerabilityDatabasePort):
    """Vulnerability records, affected software and feed bookkeeping properties.

    One connection is shared by all threads and serialized with a re-entrant
    lock. A `version` property that differs from DB_SCHEMA_VERSION means the
    file was written by an incompatible release; it is deleted and recreated.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._tx_depth = 0

    # connection lifecycle -------------------------------------------------

    def open(self) -> None:
        with self._lock:
            if self.conn is not None:
                return
            self._connect()
            version = self.get_property("version")
            if version is None:
                self.set_property("version", DB_SCHEMA_VERSION)
            elif version != DB_SCHEMA_VERSION:
                logger.warning(
                    "Database schema version %s does not match %s; rebuilding %s",
                    version, DB_SCHEMA_VERSION, self.db_path,
                )
                self.close()
                self._delete_files()
                self._connect()
                self.set_property("version", DB_SCHEMA_VERSION)

    def _connect(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.executescript(_SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise DatabaseUnavailableError(f"Unable to open vulnerability database {self.db_path}: {e}") from e
        self.conn = conn
        logger.debug("Opened vulnerability database at %s", self.db_path)

    def close(self) -> None:
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    def _delete_files(self) -> None:
        for suffix in ("", "-journal", "-wal", "-shm"):
            Path(f"{self.db_path}{suffix}").unlink(missing_ok=True)

    def purge(self) -> None:
        """Delete the database file. An open database is recreated empty."""
        with self._lock:
            was_open = self.conn is not None
            self.close()
            self._delete_files()
            logger.info("Deleted vulnerability database %s", self.db_path)
            if was_open:
                self.open()

    def __enter__(self) -> SqliteVulnerabilityDatabase:
        self.open()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    @property
    def _conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise DatabaseError("Database not connected")
        return self.conn

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            conn = self._conn
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield
                finally:
                    self._tx_depth -= 1
                return
            conn.execute("BEGIN IMMEDIATE")
            self._tx_depth = 1
            try:
                yield
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")
            finally:
                self._tx_depth = 0

    # properties -----------------------------------------------------------

    def get_property(self, key: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute("SELECT value FROM properties WHERE id = ?", (key,)).fetchone()
            return row["value"] if row else None

    def set_property(self, key: str, value: str) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO properties (id, value) VALUES (?, ?) "
                "ON CONFLICT(id) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    def get_properties(self) -> dict[str, str]:
        with self._lock:
            rows = self._conn.execute("SELECT id, value FROM properties ORDER BY id").fetchall()
            return {r["id"]: r["value"] for r in rows}

    # records --------------------------------------------------------------

    def upsert_record(self, record: Vulnerability) -> None:
        with self.transaction():
            conn = self._conn
            conn.execute("DELETE FROM vulnerability WHERE cve = ?", (record.name,))
            cur = conn.execute(
                "INSERT INTO vulnerability (cve, description, published, last_modified) VALUES (?, ?, ?, ?)",
                (record.name, record.description, _fmt_dt(record.published_at), _fmt_dt(record.last_modified_at)),
            )
            vid = cur.lastrowid
            conn.executemany(
                "INSERT INTO cvss (vulnerability_id, version, base_score, severity, vector) VALUES (?, ?, ?, ?, ?)",
                [(vid, s.version, s.base_score, s.severity.value if s.severity else None, s.vector) for s in record.cvss],
            )
            conn.executemany(
                "INSERT INTO cwe (vulnerability_id, cwe) VALUES (?, ?)",
                [(vid, c) for c in record.cwes],
            )
            conn.executemany(
                "INSERT INTO vuln_reference (vulnerability_id, url, source, tags) VALUES (?, ?, ?, ?)",
                [(vid, r.url, r.source, ",".join(r.tags)) for r in record.references],
            )
            conn.executemany(
                "INSERT INTO software (vulnerability_id, cpe, vendor, product, version_start_including, "
                "version_start_excluding, version_end_including, version_end_excluding, vulnerable) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        vid, s.cpe.to_cpe23(), s.vendor, s.product,
                        s.version_start_including, s.version_start_excluding,
                        s.version_end_including, s.version_end_excluding,
                        int(s.vulnerable),
                    )
                    for s in record.software
                ],
            )

    def delete_record(self, name: str) -> bool:
        with self.transaction():
            cur = self._conn.execute("DELETE FROM vulnerability WHERE cve = ?", (name,))
            return cur.rowcount > 0

    def get_record(self, name: str) -> Optional[Vulnerability]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM vulnerability WHERE cve = ?", (name,)).fetchone()
            if row is None:
                return None
            return self._load(row)

    def _load(self, row: sqlite3.Row) -> Vulnerability:
        conn = self._conn
        vid = row["id"]
        cvss = tuple(
            CvssScore(
                version=r["version"],
                base_score=r["base_score"],
                severity=Severity(r["severity"]) if r["severity"] else None,
                vector=r["vector"],
            )
            for r in conn.execute("SELECT * FROM cvss WHERE vulnerability_id = ? ORDER BY rowid", (vid,))
        )
        cwes = tuple(
            r["cwe"] for r in conn.execute("SELECT cwe FROM cwe WHERE vulnerability_id = ? ORDER BY rowid", (vid,))
        )
        references = tuple(
            Reference(url=r["url"], source=r["source"], tags=tuple(t for t in (r["tags"] or "").split(",") if t))
            for r in conn.execute("SELECT * FROM vuln_reference WHERE vulnerability_id = ? ORDER BY rowid", (vid,))
        )
        software = tuple(
            self._software(r)
            for r in conn.execute("SELECT * FROM software WHERE vulnerability_id = ? ORDER BY rowid", (vid,))
        )
        return Vulnerability(
            name=row["cve"],
            description=row["description"],
            cvss=cvss,
            cwes=cwes,
            references=references,
            software=software,
            published_at=_parse_dt(row["published"]),
            last_modified_at=_parse_dt(row["last_modified"]),
        )

    @staticmethod
    def _software(r: sqlite3.Row) -> VulnerableSoftware:
        return VulnerableSoftware(
            cpe=Cpe.parse(r["cpe"]),
            version_start_including=r["version_start_including"],
            version_start_excluding=r["version_start_excluding"],
            version_end_including=r["version_end_including"],
            version_end_excluding=r["version_end_excluding"],
            vulnerable=bool(r["vulnerable"]),
        )

    def get_vulnerabilities(self, identifier: Identifier) -> list[Vulnerability]:
        version = identifier.version
        with self._lock:
            rows = self._conn.execute(
                "SELECT s.*, v.cve FROM software s JOIN vulnerability v ON v.id = s.vulnerability_id "
                "WHERE s.vendor = ? AND s.product = ? AND s.vulnerable = 1 ORDER BY v.cve, s.rowid",
                (identifier.cpe.vendor, identifier.cpe.product),
            ).fetchall()
            names: list[str] = []
            for r in rows:
                if r["cve"] not in names and self._software(r).matches_version(version):
                    names.append(r["cve"])
            result = []
            for name in names:
                record = self.get_record(name)
                if record is not None:
                    result.append(record)
            return result

    def all_vendor_product_pairs(self) -> set[tuple[str, str]]:
        with self._lock:
            rows = self._conn.execute("SELECT DISTINCT vendor, product FROM software").fetchall()
            return {(r["vendor"], r["product"]) for r in rows}

    def data_exists(self) -> bool:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) AS n FROM vulnerability").fetchone()
            return bool(row["n"])

    def count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) AS n FROM vulnerability").fetchone()["n"]

    def cleanup_database(self) -> int:
        """Delete vulnerabilities left without affected software, and any dangling child rows."""
        with self.transaction():
            conn = self._conn
            cur = conn.execute(
                "DELETE FROM vulnerability WHERE NOT EXISTS "
                "(SELECT 1 FROM software s WHERE s.vulnerability_id = vulnerability.id)"
            )
            removed = cur.rowcount
            for table in ("software", "cvss", "cwe", "vuln_reference"):
                conn.execute(
                    f"DELETE FROM {table} WHERE vulnerability_id NOT IN (SELECT id FROM vulnerability)"
                )
        logger.info("Database cleanup removed %d orphaned records", removed)
        return removed
