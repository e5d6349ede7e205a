from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import cached_property
from typing import Optional, Sequence

from ..domain.models import Dependency, Identifier, Vulnerability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PropertyMatcher:
    """A single predicate value: literal or regular expression, case-insensitive by default."""

    value: str
    regex: bool = False
    case_sensitive: bool = False

    @cached_property
    def _pattern(self) -> re.Pattern[str]:
        flags = 0 if self.case_sensitive else re.IGNORECASE
        return re.compile(self.value, flags)

    def matches(self, text: Optional[str]) -> bool:
        if text is None:
            return False
        if self.regex:
            return self._pattern.fullmatch(text) is not None
        if self.case_sensitive:
            return self.value == text
        return self.value.lower() == text.lower()

    def matches_prefix(self, text: Optional[str]) -> bool:
        """Like matches(), but a literal value also matches as a prefix (cpe:2.3:a:apache:struts)."""
        if self.matches(text):
            return True
        if self.regex or text is None:
            return False
        if self.case_sensitive:
            return text.startswith(self.value)
        return text.lower().startswith(self.value.lower())


@dataclass(frozen=True)
class SuppressionRule:
    """A declared false positive.

    Artifact predicates (file_path, sha1, gav) narrow the rule to particular
    artifacts; when none are given the rule applies everywhere. `cpe` removes
    identifiers; `cve`, `cwe`, `cvss_below` and `vulnerability_name` remove
    vulnerabilities, any one of them matching being enough.
    """

    file_path: Optional[PropertyMatcher] = None
    sha1: Optional[str] = None
    gav: Optional[PropertyMatcher] = None

    cpe: tuple[PropertyMatcher, ...] = field(default_factory=tuple)

    cve: tuple[str, ...] = field(default_factory=tuple)
    cwe: tuple[str, ...] = field(default_factory=tuple)
    cvss_below: tuple[float, ...] = field(default_factory=tuple)
    vulnerability_name: tuple[PropertyMatcher, ...] = field(default_factory=tuple)

    notes: Optional[str] = None
    base: bool = False
    until: Optional[datetime] = None

    @property
    def has_identifier_predicates(self) -> bool:
        return bool(self.cpe)

    @property
    def has_vulnerability_predicates(self) -> bool:
        return bool(self.cve or self.cwe or self.cvss_below or self.vulnerability_name)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.until is None:
            return False
        now = now or datetime.now(timezone.utc)
        until = self.until if self.until.tzinfo else self.until.replace(tzinfo=timezone.utc)
        return until < now

    def applies_to(self, dependency: Dependency) -> bool:
        if self.file_path is not None and not self.file_path.matches(str(dependency.file_path)):
            return False
        if self.sha1 is not None and self.sha1.lower() != dependency.sha1.lower():
            return False
        if self.gav is not None and not any(self.gav.matches(s) for s in dependency.software_identifiers):
            return False
        return True

    def matches_identifier(self, identifier: Identifier) -> bool:
        return any(m.matches_prefix(identifier.value) for m in self.cpe)

    def matches_vulnerability(self, vulnerability: Vulnerability) -> bool:
        name = vulnerability.name.upper()
        if any(c.upper() == name for c in self.cve):
            return True
        if any(m.matches(vulnerability.name) for m in self.vulnerability_name):
            return True
        if self.cwe:
            wanted = {_normalize_cwe(c) for c in self.cwe}
            if any(_normalize_cwe(c) in wanted for c in vulnerability.cwes):
                return True
        if self.cvss_below:
            for threshold in self.cvss_below:
                scores = [s for s in (vulnerability.score_for("4"), vulnerability.score_for("3"), vulnerability.score_for("2")) if s is not None]
                if any(s < threshold for s in scores):
                    return True
        return False


def _normalize_cwe(value: str) -> str:
    value = value.strip().upper()
    return value if value.startswith("CWE-") else f"CWE-{value}"


class SuppressionFilter:
    """Move identifiers and vulnerabilities matched by rules to the suppressed lists.

    Every rule is evaluated against the list as it stood before filtering, so
    the outcome does not depend on rule order. An item matched by several
    rules is suppressed once, noted with the first non-base rule; an item
    matched only by base rules is dropped without being recorded. Running the
    filter again on its own output changes nothing.
    """

    def __init__(self, rules: Sequence[SuppressionRule], now: Optional[datetime] = None) -> None:
        self._rules = [r for r in rules if not r.is_expired(now)]
        expired = len(rules) - len(self._rules)
        if expired:
            logger.info(f"Ignoring {expired} expired suppression rule(s)")

    @property
    def rules(self) -> list[SuppressionRule]:
        return list(self._rules)

    def apply(self, dependency: Dependency) -> None:
        self.apply_identifiers(dependency)
        self.apply_vulnerabilities(dependency)

    def apply_identifiers(self, dependency: Dependency) -> None:
        rules = [r for r in self._rules if r.has_identifier_predicates and r.applies_to(dependency)]
        if not rules or not dependency.identifiers:
            return
        kept: list[Identifier] = []
        for identifier in dependency.identifiers:
            matched = [r for r in rules if r.matches_identifier(identifier)]
            if not matched:
                kept.append(identifier)
                continue
            recorded = next((r for r in matched if not r.base), None)
            logger.debug(f"Suppressing {identifier.value} on {dependency.file_name}")
            if recorded is not None:
                dependency.suppressed_identifiers.append(identifier.with_updates(notes=recorded.notes))
        dependency.identifiers = kept

    def apply_vulnerabilities(self, dependency: Dependency) -> None:
        rules = [r for r in self._rules if r.has_vulnerability_predicates and r.applies_to(dependency)]
        if not rules or not dependency.vulnerabilities:
            return
        kept: list[Vulnerability] = []
        for vulnerability in dependency.vulnerabilities:
            matched = [r for r in rules if r.matches_vulnerability(vulnerability)]
            if not matched:
                kept.append(vulnerability)
                continue
            recorded = next((r for r in matched if not r.base), None)
            logger.debug(f"Suppressing {vulnerability.name} on {dependency.file_name}")
            if recorded is not None:
                dependency.suppressed_vulnerabilities.append(vulnerability.with_updates(notes=recorded.notes))
        dependency.vulnerabilities = kept
