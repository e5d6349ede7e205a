from __future__ import annotations

from typing import Optional, Sequence


class CveMatcherError(Exception):
    """Base error. Subclasses flagged fatal abort the whole run."""

    fatal: bool = False


class DatabaseError(CveMatcherError):
    pass


class DatabaseUnavailableError(DatabaseError):
    fatal = True


class NoDataError(CveMatcherError):
    fatal = True


class LockTimeoutError(CveMatcherError):
    fatal = True


class IndexUnavailableError(CveMatcherError):
    pass


class DownloadFailedError(CveMatcherError):
    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Unable to download {url}: {reason}")
        self.url = url
        self.reason = reason


class UpdateError(CveMatcherError):
    pass


class SuppressionParseError(CveMatcherError):
    pass


class AnalysisError(CveMatcherError):
    def __init__(self, message: str, dependency_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.dependency_id = dependency_id


class ExceptionCollection(CveMatcherError):
    """Failures gathered while processing independent units of work.

    Raised once the whole unit (an update cycle or an analysis pass) is done.
    `result` carries whatever partial output was produced.
    """

    def __init__(
        self,
        exceptions: Sequence[BaseException],
        *,
        fatal: bool = False,
        result: object = None,
        message: Optional[str] = None,
    ) -> None:
        self.exceptions: list[BaseException] = list(exceptions)
        self.fatal = fatal or any(getattr(e, "fatal", False) for e in self.exceptions)
        self.result = result
        summary = message or "One or more exceptions occurred"
        details = "; ".join(str(e) for e in self.exceptions)
        super().__init__(f"{summary}: {details}" if details else summary)

    def __len__(self) -> int:
        return len(self.exceptions)
