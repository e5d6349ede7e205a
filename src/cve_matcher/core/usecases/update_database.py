from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Optional

from ..domain.enums import PartitionState
from ..domain.models import FeedPartition, Vulnerability
from ..errors import ExceptionCollection, UpdateError
from ..ports.clock_port import ClockPort, SystemClock
from ..ports.database_port import VulnerabilityDatabasePort
from ..ports.feed_port import FeedSourcePort
from ..ports.index_port import CandidateIndexPort
from ..ports.lock_port import LockFactory, LockMode
from ..services.downloader import Downloader

logger = logging.getLogger(__name__)

LAST_CHECKED_KEY = "nvd.last_checked"
PARTITION_KEY_PREFIX = "nvd.partition.last_modified."


def partition_property_key(partition_id: str) -> str:
    return PARTITION_KEY_PREFIX + partition_id


def filter_software(record: Vulnerability, cpe_starts_with: str) -> Optional[Vulnerability]:
    """Keep only affected software whose CPE starts with the prefix; None when nothing is left."""
    if not cpe_starts_with:
        return record
    kept = tuple(s for s in record.software if s.cpe.to_cpe23().startswith(cpe_starts_with))
    if not kept:
        return None
    if len(kept) == len(record.software):
        return record
    return record.with_updates(software=kept)


@dataclass
class UpdateResult:
    partitions: dict[str, FeedPartition] = field(default_factory=dict)
    skipped: bool = False
    records_imported: int = 0
    records_deleted: int = 0
    records_cleaned: int = 0

    @property
    def updated(self) -> bool:
        return any(p.state is PartitionState.COMMITTED for p in self.partitions.values())

    @property
    def failed(self) -> list[FeedPartition]:
        return [p for p in self.partitions.values() if p.state is PartitionState.FAILED]


class UpdateDatabaseUseCase:
    """Bring the vulnerability database and candidate index up to date with the feed.

    Each partition moves CHECKING -> NONE_NEEDED, or CHECKING -> DOWNLOADING ->
    PROCESSING -> COMMITTED, and any step may end in FAILED. Partitions are
    independent: failures are collected and raised together, non-fatal, once
    every partition has been attempted. Downloads run concurrently; imports run
    one partition per transaction, in feed order.
    """

    def __init__(
        self,
        database: VulnerabilityDatabasePort,
        index: CandidateIndexPort,
        source: FeedSourcePort,
        downloader: Downloader,
        lock_factory: Optional[LockFactory] = None,
        *,
        cpe_starts_with: str = "cpe:2.3:a:",
        max_download_workers: int = 4,
        valid_for_hours: float = 0.0,
        clock: Optional[ClockPort] = None,
    ) -> None:
        self._db = database
        self._index = index
        self._source = source
        self._downloader = downloader
        self._lock_factory = lock_factory
        self._cpe_starts_with = cpe_starts_with
        self._max_workers = max(1, max_download_workers)
        self._valid_for_seconds = valid_for_hours * 3600
        self._clock = clock or SystemClock()

    def execute(self, *, force: bool = False) -> UpdateResult:
        lock = self._lock_factory(LockMode.EXCLUSIVE) if self._lock_factory else nullcontext()
        with lock:
            result = self._run(force)
        failures = [p.error for p in result.failed if p.error is not None]
        if failures:
            logger.warning(f"Update finished with {len(failures)} failed partition(s); some CVEs may not be reported")
            raise ExceptionCollection(failures, fatal=False, result=result, message="Database update incomplete")
        return result

    # steps ------------------------------------------------------------------

    def _recently_checked(self) -> bool:
        if self._valid_for_seconds <= 0 or not self._db.data_exists():
            return False
        last = self._db.get_property(LAST_CHECKED_KEY)
        if last is None:
            return False
        elapsed = self._clock.now().timestamp() - int(last)
        return 0 <= elapsed < self._valid_for_seconds

    def _run(self, force: bool) -> UpdateResult:
        if not force and self._recently_checked():
            logger.info("Skipping feed check: the last check is still valid")
            return UpdateResult(skipped=True)

        partitions = self._source.partitions()
        result = UpdateResult(partitions={p.id: p for p in partitions})
        logger.info(f"Checking {len(partitions)} feed partitions")

        for p in partitions:
            self._check(p)
        stale = [p for p in partitions if p.state is PartitionState.DOWNLOADING]
        if not stale:
            logger.info("Vulnerability database is up to date")
        else:
            logger.info(f"{len(stale)} partition(s) need an update: {', '.join(p.id for p in stale)}")
            self._download_and_process(stale, result)

        if result.updated:
            result.records_cleaned = self._db.cleanup_database()
            self._index.rebuild(self._db)
        if not result.failed:
            self._db.set_property(LAST_CHECKED_KEY, str(int(self._clock.now().timestamp())))
        return result

    def _fail(self, p: FeedPartition, error: BaseException) -> None:
        logger.warning(f"Partition {p.id} failed in {p.state.value}: {error}")
        p.state = PartitionState.FAILED
        p.error = error

    def _check(self, p: FeedPartition) -> None:
        p.state = PartitionState.CHECKING
        try:
            meta = self._downloader.download(p.meta_url, use_cache=False)
            p.last_modified = self._source.parse_last_modified(meta)
        except Exception as e:
            self._fail(p, e)
            return
        recorded = self._db.get_property(partition_property_key(p.id))
        p.needs_update = recorded is None or int(recorded) != p.last_modified
        p.state = PartitionState.DOWNLOADING if p.needs_update else PartitionState.NONE_NEEDED
        logger.debug(f"Partition {p.id}: recorded={recorded} upstream={p.last_modified} -> {p.state.value}")

    def _download_and_process(self, stale: list[FeedPartition], result: UpdateResult) -> None:
        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="feed-download") as pool:
            futures: dict[str, Future[bytes]] = {}
            for p in stale:
                logger.info(f"Downloading partition {p.id}")
                futures[p.id] = pool.submit(self._downloader.download, p.url, version=p.last_modified)
            # commit serially, in feed order, while later downloads continue
            for p in stale:
                try:
                    content = futures[p.id].result()
                except Exception as e:
                    self._fail(p, e)
                    continue
                logger.debug(f"Downloaded partition {p.id}")
                self._process(p, content, result)

    def _process(self, p: FeedPartition, content: bytes, result: UpdateResult) -> None:
        p.state = PartitionState.PROCESSING
        if p.last_modified is None:
            self._fail(p, UpdateError(f"Partition {p.id} has no upstream timestamp"))
            return
        imported = deleted = 0
        try:
            with self._db.transaction():
                for record in self._source.parse_records(content):
                    if record.rejected:
                        if self._db.delete_record(record.name):
                            deleted += 1
                        continue
                    kept = filter_software(record, self._cpe_starts_with)
                    if kept is None:
                        continue
                    self._db.upsert_record(kept)
                    imported += 1
                self._db.set_property(partition_property_key(p.id), str(p.last_modified))
        except Exception as e:
            self._fail(p, e)
            return
        p.state = PartitionState.COMMITTED
        result.records_imported += imported
        result.records_deleted += deleted
        logger.info(f"Partition {p.id} committed: {imported} records imported, {deleted} rejected records removed")
