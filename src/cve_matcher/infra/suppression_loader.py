from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..core.errors import SuppressionParseError
from ..core.services.suppression import PropertyMatcher, SuppressionRule

logger = logging.getLogger(__name__)


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class MatcherModel(_Model):
    """{"value": "...", "regex": true, "caseSensitive": false}"""

    value: str = Field(min_length=1)
    regex: bool = False
    case_sensitive: bool = Field(False, alias="caseSensitive")

    @model_validator(mode="after")
    def _check_regex(self) -> "MatcherModel":
        if self.regex:
            try:
                re.compile(self.value)
            except re.error as e:
                raise ValueError(f"invalid regular expression {self.value!r}: {e}") from e
        return self

    def to_domain(self) -> PropertyMatcher:
        return PropertyMatcher(value=self.value, regex=self.regex, case_sensitive=self.case_sensitive)


Matcher = Union[str, MatcherModel]


def _matcher(value: Matcher) -> PropertyMatcher:
    if isinstance(value, str):
        return PropertyMatcher(value=value)
    return value.to_domain()


class RuleModel(_Model):
    notes: Optional[str] = None
    base: bool = False
    until: Optional[Union[datetime, date]] = None

    file_path: Optional[Matcher] = Field(None, alias="filePath")
    sha1: Optional[str] = Field(None, pattern=r"^[0-9a-fA-F]{40}$")
    gav: Optional[Matcher] = None

    cpe: list[Matcher] = Field(default_factory=list)
    cve: list[str] = Field(default_factory=list)
    cwe: list[str] = Field(default_factory=list)
    cvss_below: list[float] = Field(default_factory=list, alias="cvssBelow")
    vulnerability_name: list[Matcher] = Field(default_factory=list, alias="vulnerabilityName")

    def to_domain(self) -> SuppressionRule:
        until = self.until
        if isinstance(until, date) and not isinstance(until, datetime):
            until = datetime(until.year, until.month, until.day, tzinfo=timezone.utc)
        return SuppressionRule(
            file_path=_matcher(self.file_path) if self.file_path is not None else None,
            sha1=self.sha1,
            gav=_matcher(self.gav) if self.gav is not None else None,
            cpe=tuple(_matcher(m) for m in self.cpe),
            cve=tuple(self.cve),
            cwe=tuple(self.cwe),
            cvss_below=tuple(self.cvss_below),
            vulnerability_name=tuple(_matcher(m) for m in self.vulnerability_name),
            notes=self.notes,
            base=self.base,
            until=until,
        )


class SuppressionDocument(_Model):
    suppressions: list[RuleModel] = Field(default_factory=list)


def parse_suppressions(content: str | bytes, source: str = "<string>") -> list[SuppressionRule]:
    """Parse a JSON suppression document into rules.

    Raises:
        SuppressionParseError: If the document is not valid JSON or does not match the schema,
            or if a rule has no predicate that could remove anything.
    """
    try:
        doc = SuppressionDocument.model_validate_json(content)
    except ValidationError as e:
        raise SuppressionParseError(f"Invalid suppression file {source}: {e}") from e

    rules: list[SuppressionRule] = []
    for i, model in enumerate(doc.suppressions):
        rule = model.to_domain()
        if not (rule.has_identifier_predicates or rule.has_vulnerability_predicates):
            raise SuppressionParseError(
                f"Invalid suppression file {source}: rule {i} has no cpe, cve, cwe, cvssBelow or vulnerabilityName"
            )
        rules.append(rule)
    logger.debug("Loaded %d suppression rules from %s", len(rules), source)
    return rules


def load_suppressions(path: str | Path) -> list[SuppressionRule]:
    p = Path(path)
    try:
        content = p.read_bytes()
    except OSError as e:
        raise SuppressionParseError(f"Unable to read suppression file {p}: {e}") from e
    return parse_suppressions(content, source=str(p))
