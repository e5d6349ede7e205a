from __future__ import annotations

import logging
import os

from dependency_injector import containers, providers

from ..config.settings import AppConfig, build_proxy_url
from ..core.domain.enums import Confidence
from ..core.services.downloader import Downloader
from ..core.services.identifier_matcher import IdentifierMatcher, MatcherSettings
from ..core.usecases.analyze_artifacts import AnalyzeArtifactsUseCase
from ..core.usecases.clear_cache import ClearCacheUseCase
from ..core.usecases.purge_database import PurgeDatabaseUseCase
from ..core.usecases.update_database import UpdateDatabaseUseCase
from ..infra.cache_diskcache import DiskCacheAdapter
from ..infra.directory_lock import directory_lock_factory
from ..infra.http_client import HttpClient
from ..infra.memory_index import InMemoryCandidateIndex
from ..infra.nvd_feed import NvdFeedSource
from ..infra.rate_limiter import SimpleRateLimiter
from ..infra.sqlite_database import DB_FILE_NAME, SqliteVulnerabilityDatabase
from ..infra.suppression_loader import load_suppressions
from ..shared.paths import resolve_data_dir

logger = logging.getLogger(__name__)


def data_dir_resource(data_dir):
	return resolve_data_dir(data_dir or os.getenv("CVE_MATCHER_DATA_DIR"))


def cache_resource(cache_dir, download_cache_ttl_hours):
	cache_dir_str = str(cache_dir) if cache_dir else None
	logger.info(f"Initializing download cache at: {cache_dir_str or 'default user cache directory'}")
	with DiskCacheAdapter(
		namespace="feeds",
		default_ttl_seconds=int(download_cache_ttl_hours * 3600),
		base_dir=cache_dir_str,
	) as cache:
		yield cache
	logger.debug("Download cache closed")


def database_resource(data_dir):
	db_path = data_dir / DB_FILE_NAME
	logger.info(f"Opening vulnerability database at: {db_path}")
	with SqliteVulnerabilityDatabase(db_path) as db:
		yield db
	logger.debug("Vulnerability database closed")


def http_client_resource(timeout_seconds, proxy_host, proxy_port, proxy_username, proxy_password, requests_per_second=None):
	proxy = build_proxy_url(proxy_host, proxy_port, proxy_username, proxy_password)
	if proxy:
		logger.info(f"Using HTTP proxy {proxy_host}:{proxy_port or ''}")
	rate_limiter = SimpleRateLimiter(requests_per_second) if requests_per_second else None
	client = HttpClient(timeout_seconds=timeout_seconds, rate_limiter=rate_limiter, proxy=proxy)
	try:
		yield client
	finally:
		client.close()


def index_resource(database):
	index = InMemoryCandidateIndex(database)
	try:
		yield index
	finally:
		index.close()


def matcher_settings(weight_high, weight_medium, weight_low, min_match_score, max_query_results):
	return MatcherSettings(
		weights={
			Confidence.HIGH: weight_high,
			Confidence.MEDIUM: weight_medium,
			Confidence.LOW: weight_low,
		},
		min_score=min_match_score,
		max_results=max_query_results,
	)


def configured_suppressions(suppression_file):
	if not suppression_file:
		return []
	return load_suppressions(suppression_file)


def hours_to_seconds(hours):
	return int(hours * 3600)


class Container(containers.DeclarativeContainer):
	config = providers.Configuration(pydantic_settings=[AppConfig()])

	data_dir = providers.Resource(data_dir_resource, data_dir=config.data_dir)

	cache = providers.Resource(
		cache_resource,
		cache_dir=config.cache_dir,
		download_cache_ttl_hours=config.download_cache_ttl_hours,
	)

	database = providers.Resource(database_resource, data_dir=data_dir)

	http_client = providers.Resource(
		http_client_resource,
		timeout_seconds=config.connection_timeout_seconds,
		proxy_host=config.proxy_host,
		proxy_port=config.proxy_port,
		proxy_username=config.proxy_username,
		proxy_password=config.proxy_password,
		requests_per_second=config.requests_per_second,
	)

	index = providers.Resource(index_resource, database=database)

	lock_factory = providers.Callable(
		directory_lock_factory,
		data_dir,
		max_wait_seconds=config.lock_max_wait_seconds,
		poll_interval_seconds=config.lock_poll_interval_seconds,
	)

	feed_source = providers.Factory(
		NvdFeedSource,
		http_client=http_client,
		base_url=config.feed_base_url,
		start_year=config.feed_start_year,
	)

	downloader = providers.Factory(
		Downloader,
		source=feed_source,
		cache=cache,
		cache_ttl_seconds=providers.Callable(hours_to_seconds, config.download_cache_ttl_hours),
		max_attempts=config.download_max_attempts,
		backoff_seconds=config.download_backoff_seconds,
		rate_limit_backoff_seconds=config.rate_limit_backoff_seconds,
	)

	matcher = providers.Factory(
		IdentifierMatcher,
		index=index,
		settings=providers.Callable(
			matcher_settings,
			weight_high=config.weight_high,
			weight_medium=config.weight_medium,
			weight_low=config.weight_low,
			min_match_score=config.min_match_score,
			max_query_results=config.max_query_results,
		),
	)

	suppression_rules = providers.Callable(configured_suppressions, config.suppression_file)

	update_uc = providers.Factory(
		UpdateDatabaseUseCase,
		database=database,
		index=index,
		source=feed_source,
		downloader=downloader,
		lock_factory=lock_factory,
		cpe_starts_with=config.cpe_starts_with,
		max_download_workers=config.max_download_workers,
		valid_for_hours=config.update_valid_for_hours,
	)
	analyze_uc = providers.Factory(
		AnalyzeArtifactsUseCase,
		database=database,
		index=index,
		matcher=matcher,
		update=update_uc,
		lock_factory=lock_factory,
		auto_update=config.auto_update,
		suppression_rules=suppression_rules,
		timeout_seconds=config.analysis_timeout_seconds,
	)
	purge_uc = providers.Factory(
		PurgeDatabaseUseCase,
		database=database,
		index=index,
		cache=cache,
		lock_factory=lock_factory,
	)
	clear_cache_uc = providers.Factory(ClearCacheUseCase, cache=cache)
