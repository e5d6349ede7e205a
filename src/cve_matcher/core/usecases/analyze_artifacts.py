from __future__ import annotations

import logging
from contextlib import nullcontext
from pathlib import Path
from typing import Optional, Sequence

from ..domain.models import Dependency
from ..errors import ExceptionCollection, NoDataError
from ..ports.database_port import VulnerabilityDatabasePort
from ..ports.index_port import CandidateIndexPort
from ..ports.lock_port import LockFactory, LockMode
from ..services.analysis_engine import AnalysisEngine
from ..services.analyzers import default_analyzers
from ..services.identifier_matcher import IdentifierMatcher
from ..services.suppression import SuppressionFilter, SuppressionRule
from .update_database import UpdateDatabaseUseCase

logger = logging.getLogger(__name__)


class AnalyzeArtifactsUseCase:
    """Scan paths and report the vulnerabilities of every artifact found.

    The database is updated first (unless auto_update is off), then the scan
    and analysis run under a shared directory lock so no updater can write
    while results are read. Non-fatal failures from the update and from the
    analysis are raised together once every artifact has been processed.
    """

    def __init__(
        self,
        database: VulnerabilityDatabasePort,
        index: CandidateIndexPort,
        matcher: IdentifierMatcher,
        *,
        update: Optional[UpdateDatabaseUseCase] = None,
        lock_factory: Optional[LockFactory] = None,
        auto_update: bool = True,
        suppression_rules: Sequence[SuppressionRule] = (),
        timeout_seconds: float = 600.0,
        max_workers: Optional[int] = None,
    ) -> None:
        self._db = database
        self._index = index
        self._matcher = matcher
        self._update = update
        self._lock_factory = lock_factory
        self._auto_update = auto_update
        self._rules = list(suppression_rules)
        self._timeout = timeout_seconds
        self._max_workers = max_workers

    def _run_update(self) -> list[BaseException]:
        if not self._auto_update or self._update is None:
            logger.info("Automatic update disabled; using the existing vulnerability database")
            return []
        try:
            self._update.execute()
        except ExceptionCollection as e:
            if e.fatal:
                raise
            logger.warning(f"Continuing with a partially updated database: {e}")
            return list(e.exceptions)
        return []

    def execute(
        self,
        paths: Sequence[str | Path],
        *,
        suppression_rules: Sequence[SuppressionRule] = (),
    ) -> list[Dependency]:
        if not paths:
            raise ValueError("At least one path to scan is required")
        exceptions = self._run_update()

        suppression = SuppressionFilter([*self._rules, *suppression_rules])
        engine = AnalysisEngine(
            default_analyzers(self._matcher, self._db, suppression),
            timeout_seconds=self._timeout,
            max_workers=self._max_workers,
        )

        lock = self._lock_factory(LockMode.SHARED) if self._lock_factory else nullcontext()
        with lock:
            if not self._db.data_exists():
                raise NoDataError("No vulnerability data available; run an update first or enable auto_update")
            logger.info(f"Candidate index holds {self._index.num_docs()} vendor/product pairs")
            engine.scan(paths)
            try:
                dependencies = engine.analyze_dependencies()
            except ExceptionCollection as e:
                if e.fatal:
                    raise
                exceptions.extend(e.exceptions)
                dependencies = engine.dependencies

        if exceptions:
            raise ExceptionCollection(exceptions, fatal=False, result=dependencies, message="Scan completed with errors")
        return dependencies
