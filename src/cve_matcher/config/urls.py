from __future__ import annotations

DEFAULT_FEED_BASE_URL = "https://nvd.nist.gov/feeds/json/cve/2.0/"


def _base(base_url: str) -> str:
	return base_url if base_url.endswith("/") else base_url + "/"


def get_feed_file_name(partition_id: str) -> str:
	return f"nvdcve-2.0-{partition_id}.json.gz"


def get_feed_url(base_url: str, partition_id: str) -> str:
	return _base(base_url) + get_feed_file_name(partition_id)


def get_meta_url(base_url: str, partition_id: str) -> str:
	return _base(base_url) + f"nvdcve-2.0-{partition_id}.meta"
