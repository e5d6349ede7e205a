"""Segmented version comparison.

Versions are split into numeric and short alphabetic segments and compared
segment by segment, so "1.9" < "1.10" < "1.10.1". Missing trailing segments
compare equal to "0".
"""

from __future__ import annotations

import re
from functools import total_ordering
from typing import Optional

_RX_PART = re.compile(r"(\d+[a-z]{1,3}$|[a-z]{1,3}[_-]?\d+|\d+|(rc|release|snapshot|beta|alpha)$)", re.IGNORECASE)

_RX_VERSION = re.compile(
    r"\d+(\.\d+){1,6}([._-]?(snapshot|release|final|alpha|beta|rc$|[a-zA-Z]{1,3}[_-]?\d{1,8}|[a-z]\b|\d{1,8}\b))?",
    re.IGNORECASE,
)
_RX_SINGLE_VERSION = re.compile(
    r"\d+(\.\d+){0,6}([._-]?(snapshot|release|final|alpha|beta|rc$|[a-zA-Z]{1,3}[_-]?\d{1,8}))?",
    re.IGNORECASE,
)


def _is_zero(part: str) -> bool:
    return part.isdigit() and int(part) == 0


@total_ordering
class DependencyVersion:
    def __init__(self, version: str) -> None:
        self._text = version
        lowered = version.lower()
        parts = [m.group(0) for m in _RX_PART.finditer(lowered)]
        self.parts: tuple[str, ...] = tuple(parts) if parts else (lowered,)

    def _compare(self, other: "DependencyVersion") -> int:
        left, right = self.parts, other.parts
        for lpart, rpart in zip(left, right):
            if lpart == rpart:
                continue
            if lpart.isdigit() and rpart.isdigit():
                lnum, rnum = int(lpart), int(rpart)
                if lnum != rnum:
                    return -1 if lnum < rnum else 1
                continue
            return -1 if lpart < rpart else 1
        common = min(len(left), len(right))
        if all(_is_zero(p) for p in left[common:]) and all(_is_zero(p) for p in right[common:]):
            return 0
        return -1 if len(left) < len(right) else 1

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DependencyVersion):
            return NotImplemented
        return self._compare(other) == 0

    def __lt__(self, other: "DependencyVersion") -> bool:
        if not isinstance(other, DependencyVersion):
            return NotImplemented
        return self._compare(other) < 0

    def __hash__(self) -> int:
        trimmed = list(self.parts)
        while len(trimmed) > 1 and _is_zero(trimmed[-1]):
            trimmed.pop()
        return hash(tuple(str(int(p)) if p.isdigit() else p for p in trimmed))

    @property
    def major(self) -> str:
        return self.parts[0]

    def __str__(self) -> str:
        return self._text

    def __repr__(self) -> str:
        return f"DependencyVersion({self._text!r})"


def parse_version(text: Optional[str], first_match_only: bool = False) -> Optional[DependencyVersion]:
    """Extract a version from free text such as a file name.

    When first_match_only is False and the text holds two things that look like
    versions, the result is ambiguous and None is returned.
    """
    if text is None:
        return None
    if text.strip() == "-":
        return DependencyVersion("-")

    version: Optional[str] = None
    for rx in (_RX_VERSION, _RX_SINGLE_VERSION):
        matches = rx.finditer(text)
        first = next(matches, None)
        if first is None:
            continue
        if not first_match_only and next(matches, None) is not None:
            return None
        version = first.group(0)
        break

    if version is None:
        return None
    if version.endswith("-py2"):
        version = version[: -len("-py2")]
    return DependencyVersion(version)


def version_in_range(
    version: DependencyVersion,
    *,
    start_including: Optional[str] = None,
    start_excluding: Optional[str] = None,
    end_including: Optional[str] = None,
    end_excluding: Optional[str] = None,
) -> bool:
    if start_including and version < DependencyVersion(start_including):
        return False
    if start_excluding and version <= DependencyVersion(start_excluding):
        return False
    if end_including and version > DependencyVersion(end_including):
        return False
    if end_excluding and version >= DependencyVersion(end_excluding):
        return False
    return True
