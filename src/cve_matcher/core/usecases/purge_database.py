from __future__ import annotations

import logging
from contextlib import nullcontext
from typing import Optional

from ..ports.cache_port import CachePort
from ..ports.database_port import VulnerabilityDatabasePort
from ..ports.index_port import CandidateIndexPort
from ..ports.lock_port import LockFactory, LockMode

logger = logging.getLogger(__name__)


class PurgeDatabaseUseCase:
    """Delete the local vulnerability database so the next update starts from scratch."""

    def __init__(
        self,
        database: VulnerabilityDatabasePort,
        index: Optional[CandidateIndexPort] = None,
        cache: Optional[CachePort] = None,
        lock_factory: Optional[LockFactory] = None,
    ) -> None:
        self._db = database
        self._index = index
        self._cache = cache
        self._lock_factory = lock_factory

    def execute(self, *, include_cache: bool = True) -> None:
        lock = self._lock_factory(LockMode.EXCLUSIVE) if self._lock_factory else nullcontext()
        with lock:
            if self._index is not None:
                self._index.close()
            self._db.purge()
            if include_cache and self._cache is not None:
                self._cache.clear(prefix="feed:")
        logger.info("Vulnerability database purged")
