from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path
from typing import IO, Optional

from ..core.errors import LockTimeoutError
from ..core.ports.clock_port import ClockPort, SystemClock
from ..core.ports.lock_port import LockMode, LockPort

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = "cve_matcher.update.lock"


class DirectoryLock(LockPort):
    """Advisory flock(2) lock on a file inside the data directory.

    Processes sharing the directory coordinate through it: readers take SHARED,
    the updater takes EXCLUSIVE. Acquisition polls a non-blocking flock every
    poll_interval_seconds until max_wait_seconds have passed.
    """

    def __init__(
        self,
        directory: str | Path,
        mode: LockMode = LockMode.EXCLUSIVE,
        *,
        max_wait_seconds: float = 2400.0,
        poll_interval_seconds: float = 15.0,
        clock: Optional[ClockPort] = None,
    ) -> None:
        self.directory = Path(directory)
        self.path = self.directory / LOCK_FILE_NAME
        self.mode = mode
        self._max_wait = max_wait_seconds
        self._poll = poll_interval_seconds
        self._clock = clock or SystemClock()
        self._handle: Optional[IO[bytes]] = None

    @property
    def is_held(self) -> bool:
        return self._handle is not None

    def _try_lock(self, handle: IO[bytes]) -> bool:
        op = fcntl.LOCK_EX if self.mode is LockMode.EXCLUSIVE else fcntl.LOCK_SH
        try:
            fcntl.flock(handle.fileno(), op | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def acquire(self) -> None:
        if self._handle is not None:
            return
        self.directory.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+b")
        deadline = self._clock.monotonic() + self._max_wait
        attempts = 0
        try:
            while not self._try_lock(handle):
                attempts += 1
                if self._clock.monotonic() >= deadline:
                    raise LockTimeoutError(
                        f"Unable to obtain the {self.mode.value} lock on {self.directory} "
                        f"after {self._max_wait:.0f} seconds"
                    )
                if attempts == 1:
                    logger.info(f"Waiting for the {self.mode.value} lock on {self.directory}")
                self._clock.sleep(self._poll)
        except BaseException:
            handle.close()
            raise
        if self.mode is LockMode.EXCLUSIVE:
            handle.seek(0)
            handle.truncate()
            handle.write(str(os.getpid()).encode("ascii"))
            handle.flush()
        self._handle = handle
        logger.debug(f"Acquired {self.mode.value} lock on {self.directory}")

    def release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None or handle.closed:
            return
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        except OSError as e:
            logger.debug(f"Error releasing lock on {self.directory}: {e}")
        finally:
            handle.close()
        logger.debug(f"Released {self.mode.value} lock on {self.directory}")

    def __enter__(self) -> DirectoryLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.release()


def directory_lock_factory(
    directory: str | Path,
    *,
    max_wait_seconds: float,
    poll_interval_seconds: float,
    clock: Optional[ClockPort] = None,
):
    """Return a LockFactory producing DirectoryLock instances for one directory."""

    def factory(mode: LockMode) -> DirectoryLock:
        return DirectoryLock(
            directory,
            mode,
            max_wait_seconds=max_wait_seconds,
            poll_interval_seconds=poll_interval_seconds,
            clock=clock,
        )

    return factory
