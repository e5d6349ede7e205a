from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Protocol

from ..domain.enums import AnalysisPhase, Confidence, EvidenceType
from ..domain.models import Dependency
from ..domain.version import parse_version
from ..ports.database_port import VulnerabilityDatabasePort
from .identifier_matcher import IdentifierMatcher
from .suppression import SuppressionFilter

if TYPE_CHECKING:
    from .analysis_engine import AnalysisEngine

logger = logging.getLogger(__name__)

# archive and packaging suffixes stripped before the file name is read as evidence
_ARCHIVE_SUFFIXES = (".tar.gz", ".tar.bz2", ".tar.xz", ".tgz", ".jar", ".war", ".ear", ".zip", ".whl", ".egg", ".gem", ".nupkg", ".dll", ".exe", ".so")
_RX_NAME_VERSION_SPLIT = re.compile(r"[-_.]v?\d")
_MANIFEST_NAMES = frozenset({"package.json"})


class Analyzer(Protocol):
    name: str
    phase: AnalysisPhase
    supports_parallel: bool

    def accept(self, dependency: Dependency) -> bool:
        """Whether this analyzer has anything to do for the dependency."""

    def analyze(self, dependency: Dependency, engine: "AnalysisEngine") -> None:
        """Add evidence/identifiers/vulnerabilities to the dependency in place."""


class FileNameAnalyzer:
    """Evidence from the file name, e.g. struts2-core-2.3.31.jar."""

    name = "File Name Analyzer"
    phase = AnalysisPhase.INFORMATION_COLLECTION
    supports_parallel = True

    def accept(self, dependency: Dependency) -> bool:
        return dependency.file_name not in _MANIFEST_NAMES

    @staticmethod
    def _strip_suffix(file_name: str) -> str:
        lower = file_name.lower()
        for suffix in _ARCHIVE_SUFFIXES:
            if lower.endswith(suffix):
                return file_name[: -len(suffix)]
        return file_name

    def analyze(self, dependency: Dependency, engine: "AnalysisEngine") -> None:
        base = self._strip_suffix(dependency.file_name)
        version = parse_version(base)
        if version is not None:
            dependency.evidence.add(EvidenceType.VERSION, "file", "version", str(version), Confidence.MEDIUM)

        m = _RX_NAME_VERSION_SPLIT.search(base)
        package = base[: m.start()] if m else base
        if package:
            dependency.evidence.add(EvidenceType.VENDOR, "file", "name", package, Confidence.LOW)
            dependency.evidence.add(EvidenceType.PRODUCT, "file", "name", package, Confidence.HIGH)


class PackageJsonAnalyzer:
    """Evidence from an npm package.json manifest."""

    name = "Node.js Package Analyzer"
    phase = AnalysisPhase.INFORMATION_COLLECTION
    supports_parallel = True

    def accept(self, dependency: Dependency) -> bool:
        return dependency.file_name == "package.json"

    def analyze(self, dependency: Dependency, engine: "AnalysisEngine") -> None:
        try:
            manifest = json.loads(dependency.file_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Unable to read {dependency.file_path}: {e}")
            return
        if not isinstance(manifest, dict):
            return

        evidence = dependency.evidence
        package = manifest.get("name")
        version = manifest.get("version")
        if isinstance(package, str) and package:
            # @scope/name: the scope is the closest thing npm has to a vendor
            scope, _, bare = package.rpartition("/")
            evidence.add(EvidenceType.PRODUCT, "package.json", "name", bare, Confidence.HIGH)
            evidence.add(EvidenceType.VENDOR, "package.json", "name", bare, Confidence.MEDIUM)
            if scope:
                evidence.add(EvidenceType.VENDOR, "package.json", "scope", scope.lstrip("@"), Confidence.HIGH)
        if isinstance(version, str) and version:
            evidence.add(EvidenceType.VERSION, "package.json", "version", version, Confidence.HIGH)

        author = manifest.get("author")
        if isinstance(author, dict):
            author = author.get("name")
        if isinstance(author, str) and author:
            evidence.add(EvidenceType.VENDOR, "package.json", "author", author, Confidence.LOW)

        homepage = manifest.get("homepage")
        if isinstance(homepage, str) and homepage:
            evidence.add(EvidenceType.VENDOR, "package.json", "homepage", homepage, Confidence.LOW)

        if isinstance(package, str) and package and isinstance(version, str) and version:
            purl = f"pkg:npm/{package.replace('@', '%40')}@{version}"
            if purl not in dependency.software_identifiers:
                dependency.software_identifiers.append(purl)


class CpeAnalyzer:
    """Match the collected evidence to CPE identifiers."""

    name = "CPE Analyzer"
    phase = AnalysisPhase.IDENTIFIER_ANALYSIS
    supports_parallel = True

    def __init__(self, matcher: IdentifierMatcher) -> None:
        self._matcher = matcher

    def accept(self, dependency: Dependency) -> bool:
        return len(dependency.evidence) > 0

    def analyze(self, dependency: Dependency, engine: "AnalysisEngine") -> None:
        for identifier in self._matcher.match(dependency.evidence):
            if identifier not in dependency.identifiers:
                dependency.identifiers.append(identifier)


class CpeSuppressionAnalyzer:
    """Drop suppressed identifiers before vulnerabilities are looked up for them."""

    name = "CPE Suppression Analyzer"
    phase = AnalysisPhase.IDENTIFIER_ANALYSIS
    supports_parallel = True

    def __init__(self, suppression: SuppressionFilter) -> None:
        self._filter = suppression

    def accept(self, dependency: Dependency) -> bool:
        return bool(dependency.identifiers) and bool(self._filter.rules)

    def analyze(self, dependency: Dependency, engine: "AnalysisEngine") -> None:
        self._filter.apply_identifiers(dependency)


class VulnerabilityLookupAnalyzer:
    """Attach the vulnerabilities recorded for each identifier."""

    name = "NVD CVE Analyzer"
    phase = AnalysisPhase.FINDING_ANALYSIS
    supports_parallel = True

    def __init__(self, database: VulnerabilityDatabasePort) -> None:
        self._db = database

    def accept(self, dependency: Dependency) -> bool:
        return bool(dependency.identifiers)

    def analyze(self, dependency: Dependency, engine: "AnalysisEngine") -> None:
        for identifier in dependency.identifiers:
            for vulnerability in self._db.get_vulnerabilities(identifier):
                dependency.add_vulnerability(vulnerability)
        logger.debug(f"{dependency.file_name}: {len(dependency.vulnerabilities)} vulnerabilities")


class VulnerabilitySuppressionAnalyzer:
    """Apply every suppression rule to the final results."""

    name = "Vulnerability Suppression Analyzer"
    phase = AnalysisPhase.FINAL
    supports_parallel = True

    def __init__(self, suppression: SuppressionFilter) -> None:
        self._filter = suppression

    def accept(self, dependency: Dependency) -> bool:
        return bool(self._filter.rules)

    def analyze(self, dependency: Dependency, engine: "AnalysisEngine") -> None:
        self._filter.apply(dependency)


def default_analyzers(
    matcher: IdentifierMatcher,
    database: VulnerabilityDatabasePort,
    suppression: SuppressionFilter,
) -> list[Analyzer]:
    """The fixed analyzer registry, in execution order."""
    return [
        FileNameAnalyzer(),
        PackageJsonAnalyzer(),
        CpeAnalyzer(matcher),
        CpeSuppressionAnalyzer(suppression),
        VulnerabilityLookupAnalyzer(database),
        VulnerabilitySuppressionAnalyzer(suppression),
    ]
