from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class NvdModel(BaseModel):
	model_config = ConfigDict(extra="ignore", populate_by_name=True)


class LangString(NvdModel):
	"""Localized text (descriptions, weakness names)"""
	lang: str
	value: str


class CvssData(NvdModel):
	"""Score block shared by every CVSS version"""
	version: str
	vector_string: Optional[str] = Field(None, alias="vectorString")
	base_score: Optional[float] = Field(None, alias="baseScore")
	base_severity: Optional[str] = Field(None, alias="baseSeverity")


class CvssMetric(NvdModel):
	"""One scoring source's metric; v2 keeps the severity outside cvssData"""
	source: Optional[str] = None
	type: Optional[str] = None  # Primary / Secondary
	cvss_data: CvssData = Field(alias="cvssData")
	base_severity: Optional[str] = Field(None, alias="baseSeverity")


class Metrics(NvdModel):
	cvss_metric_v40: list[CvssMetric] = Field(default_factory=list, alias="cvssMetricV40")
	cvss_metric_v31: list[CvssMetric] = Field(default_factory=list, alias="cvssMetricV31")
	cvss_metric_v30: list[CvssMetric] = Field(default_factory=list, alias="cvssMetricV30")
	cvss_metric_v2: list[CvssMetric] = Field(default_factory=list, alias="cvssMetricV2")


class Weakness(NvdModel):
	source: Optional[str] = None
	type: Optional[str] = None
	description: list[LangString] = Field(default_factory=list)


class CpeMatch(NvdModel):
	"""An affected-software criterion with optional version bounds"""
	vulnerable: bool = True
	criteria: str
	match_criteria_id: Optional[str] = Field(None, alias="matchCriteriaId")
	version_start_including: Optional[str] = Field(None, alias="versionStartIncluding")
	version_start_excluding: Optional[str] = Field(None, alias="versionStartExcluding")
	version_end_including: Optional[str] = Field(None, alias="versionEndIncluding")
	version_end_excluding: Optional[str] = Field(None, alias="versionEndExcluding")


class Node(NvdModel):
	operator: Optional[str] = None
	negate: bool = False
	cpe_match: list[CpeMatch] = Field(default_factory=list, alias="cpeMatch")


class Configuration(NvdModel):
	operator: Optional[str] = None
	negate: bool = False
	nodes: list[Node] = Field(default_factory=list)


class NvdReference(NvdModel):
	url: str
	source: Optional[str] = None
	tags: list[str] = Field(default_factory=list)


class NvdCve(NvdModel):
	"""The `cve` object of an NVD CVE API 2.0 / JSON 2.0 feed item"""
	id: str
	source_identifier: Optional[str] = Field(None, alias="sourceIdentifier")
	published: Optional[str] = None
	last_modified: Optional[str] = Field(None, alias="lastModified")
	vuln_status: Optional[str] = Field(None, alias="vulnStatus")
	descriptions: list[LangString] = Field(default_factory=list)
	metrics: Metrics = Field(default_factory=Metrics)
	weaknesses: list[Weakness] = Field(default_factory=list)
	configurations: list[Configuration] = Field(default_factory=list)
	references: list[NvdReference] = Field(default_factory=list)


class NvdVulnerabilityItem(NvdModel):
	cve: NvdCve


class NvdFeed(NvdModel):
	"""Top level of nvdcve-2.0-<partition>.json"""
	results_per_page: Optional[int] = Field(None, alias="resultsPerPage")
	format: Optional[str] = None
	version: Optional[str] = None
	timestamp: Optional[str] = None
	vulnerabilities: list[NvdVulnerabilityItem] = Field(default_factory=list)
