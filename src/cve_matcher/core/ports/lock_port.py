from __future__ import annotations

from enum import Enum
from typing import Callable, Protocol


class LockMode(Enum):
    SHARED = "shared"
    EXCLUSIVE = "exclusive"


class LockPort(Protocol):
    def acquire(self) -> None:
        """Block until the lock is held; raises LockTimeoutError when the wait is exhausted."""

    def release(self) -> None:
        """Release the lock. Safe to call repeatedly."""

    def __enter__(self) -> "LockPort":
        ...

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        ...


LockFactory = Callable[[LockMode], LockPort]
