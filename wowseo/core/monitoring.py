"""
Indexer metrics and health aggregation with a short-lived cache.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional

import pandas as pd
import requests
from sqlalchemy.exc import SQLAlchemyError
from web3.exceptions import Web3Exception

from wowseo.core.chain_client import ChainClient
from wowseo.core.database_service import LAST_PROCESSED_BLOCK_KEY, DatabaseService, now_ms
from wowseo.core.indexer_config import NETWORK_KEY
from wowseo.core.models import Block, Event, Transaction
from wowseo.core.types import (
    BatchResult,
    BatchStatus,
    HealthCheck,
    HealthStatus,
    IndexerMetrics,
    IndexerStatus,
    JobStatus,
    SystemMetrics,
)
from wowseo.utils.error_utils import WowSeoError
from wowseo.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


DEFAULT_CACHE_TTL_SECONDS = 30
DEFAULT_MAX_ACCEPTABLE_LAG = 100
# Window for processing rates.
PROCESSING_RATE_WINDOW_MINUTES = 10

_SYSTEM_CACHE_KEY = "system"

_MISSING = object()


class TTLCache:
    """
    Thread-safe cache whose entries expire ttl_seconds after they are set.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[Hashable, tuple] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if self.clock() >= expires_at:
                del self._entries[key]
                return default
            return value

    def set(self, key: Hashable, value: Any):
        with self._lock:
            self._entries[key] = (self.clock() + self.ttl_seconds, value)

    def invalidate(self, key: Hashable):
        with self._lock:
            self._entries.pop(key, None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)


@dataclass
class _BatchStats:
    last_batch_latency: Optional[float] = None
    error_count: int = 0
    last_error: Optional[str] = None


def _indexer_cache_key(indexer_id: str) -> str:
    return f"indexer:{indexer_id}"


class IndexerMonitoring:
    """
    Aggregates indexer and system metrics and evaluates health.
    Also records batch results as the indexer's metrics recorder.
    """

    def __init__(
        self,
        database_service: DatabaseService,
        get_chain_client: Optional[Callable[[str], ChainClient]] = None,
        cache: Optional[TTLCache] = None,
        max_acceptable_lag: int = DEFAULT_MAX_ACCEPTABLE_LAG,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the monitoring object.

        :param database_service: The persistence collaborator.
        :param get_chain_client: Returns the chain client for a network.
            Used for the current block. Without it, lag is not reported.
        :param cache: Metrics cache.
        :param max_acceptable_lag: Lag in blocks above which health is degraded.
        :param clock: Monotonic clock in seconds, used for uptime.
        """
        self.db = database_service
        self.get_chain_client = get_chain_client
        self.cache = cache if cache is not None else TTLCache(clock=clock)
        self.max_acceptable_lag = max_acceptable_lag
        self.clock = clock
        self.started_at = clock()
        self._stats: Dict[str, _BatchStats] = {}
        self._stats_lock = threading.Lock()

    def record_batch(self, result: BatchResult) -> None:
        """
        Record a batch outcome.
        A batch that changed state invalidates the cached metrics it affects.

        :param result: The batch result.
        """
        with self._stats_lock:
            stats = self._stats.setdefault(result.indexer_id, _BatchStats())
            if result.status in (BatchStatus.COMPLETED, BatchStatus.FAILED):
                stats.last_batch_latency = result.latency_seconds
            if result.status == BatchStatus.FAILED:
                stats.error_count += 1
                stats.last_error = result.error
        if result.status in (BatchStatus.COMPLETED, BatchStatus.FAILED):
            self.cache.invalidate(_indexer_cache_key(result.indexer_id))
            self.cache.invalidate(_SYSTEM_CACHE_KEY)

    def clear_cache(self) -> None:
        self.cache.clear()
        _LOG.info("Metrics cache cleared")

    def _get_current_block(self, network: Optional[str]) -> Optional[int]:
        if network is None or self.get_chain_client is None:
            return None
        try:
            return self.get_chain_client(network).get_block_number()
        except (
            WowSeoError,
            ConnectionError,
            requests.exceptions.RequestException,
            Web3Exception,
        ) as e:
            _LOG.warning("Could not get the current block of %s: %s", network, e)
            return None

    def _processing_rate(self, indexer_id: Optional[str] = None) -> float:
        since = now_ms() - PROCESSING_RATE_WINDOW_MINUTES * 60 * 1000
        blocks = self.db.get_blocks_processed(indexer_id, since=since)
        return blocks / PROCESSING_RATE_WINDOW_MINUTES

    def get_indexer_metrics(self, indexer_id: str) -> Optional[IndexerMetrics]:
        """
        Get the metrics of an indexer.

        :param indexer_id: The indexer id.
        :return: The metrics, or None if the indexer does not exist.
        """
        cache_key = _indexer_cache_key(indexer_id)
        cached = self.cache.get(cache_key, _MISSING)
        if cached is not _MISSING:
            return cached

        indexer = self.db.get_indexer(indexer_id)
        if indexer is None:
            return None

        configs = self.db.get_config_map(indexer_id)
        network = configs.get(NETWORK_KEY)
        cursor = configs.get(LAST_PROCESSED_BLOCK_KEY)
        last_processed_block = int(cursor) if cursor else None
        current_block = self._get_current_block(network)
        lag = None
        if current_block is not None and last_processed_block is not None:
            lag = max(current_block - last_processed_block, 0)

        totals = self.db.get_processed_totals(indexer_id)
        job_counts = self.db.get_job_counts(indexer_id)
        completed = job_counts.get(JobStatus.COMPLETED.value, 0)
        failed = job_counts.get(JobStatus.FAILED.value, 0)
        finished = completed + failed
        error_rate = failed / finished * 100 if finished > 0 else 0.0

        with self._stats_lock:
            stats = self._stats.get(indexer_id, _BatchStats())
            last_batch_latency = stats.last_batch_latency
            error_count = stats.error_count

        metrics = IndexerMetrics(
            indexer_id=indexer_id,
            name=indexer.name,
            network=network,
            status=indexer.status,
            last_run=(
                str(pd.Timestamp(indexer.last_run, unit="ms", tz="UTC"))
                if indexer.last_run is not None
                else None
            ),
            last_processed_block=last_processed_block,
            current_block=current_block,
            lag=lag,
            blocks_processed=totals["blocks"],
            transactions_processed=totals["transactions"],
            events_processed=totals["events"],
            processing_rate=self._processing_rate(indexer_id),
            error_rate=error_rate,
            error_count=max(error_count, failed),
            last_batch_latency=last_batch_latency,
        )
        self.cache.set(cache_key, metrics)
        return metrics

    def get_system_metrics(self) -> SystemMetrics:
        cached = self.cache.get(_SYSTEM_CACHE_KEY, _MISSING)
        if cached is not _MISSING:
            return cached

        by_status = self.db.count_indexers_by_status()
        active = by_status.get(IndexerStatus.ACTIVE.value, 0)
        system_rate = self._processing_rate()
        metrics = SystemMetrics(
            total_indexers=sum(by_status.values()),
            indexers_by_status=by_status,
            active_indexers=active,
            total_blocks_stored=self.db.count_rows(Block),
            total_transactions_stored=self.db.count_rows(Transaction),
            total_events_stored=self.db.count_rows(Event),
            total_blocks_processed=self.db.get_blocks_processed(),
            average_processing_rate=system_rate / active if active > 0 else 0.0,
            # Minutes.
            system_uptime=(self.clock() - self.started_at) / 60,
        )
        self.cache.set(_SYSTEM_CACHE_KEY, metrics)
        return metrics

    def get_health_status(self) -> HealthStatus:
        """
        Evaluate health. Never cached.
        A failed database check is unhealthy; any other failed check is degraded.

        :return: The health status.
        """
        checked_at = pd.Timestamp.now(tz="UTC")
        if not self.db.health_check():
            return HealthStatus(
                status="unhealthy",
                checks=[HealthCheck("database", False, "Database connection failed")],
                checked_at=checked_at,
            )
        checks = [HealthCheck("database", True)]

        try:
            by_status = self.db.count_indexers_by_status()
            in_error = by_status.get(IndexerStatus.ERROR.value, 0)
            checks.append(
                HealthCheck(
                    "indexer_errors",
                    in_error == 0,
                    f"{in_error} indexer(s) in error" if in_error else None,
                )
            )
            active_indexers = self.db.list_indexers([IndexerStatus.ACTIVE])
            checks.append(
                HealthCheck(
                    "active_indexers",
                    len(active_indexers) > 0,
                    None if active_indexers else "No active indexers",
                )
            )
            lagging = []
            unknown = []
            for indexer in active_indexers:
                configs = self.db.get_config_map(indexer.id)
                cursor = configs.get(LAST_PROCESSED_BLOCK_KEY)
                current_block = self._get_current_block(configs.get(NETWORK_KEY))
                if current_block is None:
                    if self.get_chain_client is not None:
                        unknown.append(indexer.id)
                elif cursor and current_block - int(cursor) > self.max_acceptable_lag:
                    lagging.append(indexer.id)
            messages = []
            if lagging:
                messages.append(
                    f"Lag above {self.max_acceptable_lag} blocks: {', '.join(lagging)}"
                )
            if unknown:
                messages.append(f"Current block unavailable: {', '.join(unknown)}")
            checks.append(
                HealthCheck(
                    "lag",
                    not messages,
                    "; ".join(messages) if messages else None,
                )
            )
        except SQLAlchemyError as e:
            _LOG.error("Health check query failed: %s", e)
            checks.append(HealthCheck("database", False, "Database query failed"))
            return HealthStatus("unhealthy", checks, checked_at)

        status = "healthy" if all(c.passed for c in checks) else "degraded"
        return HealthStatus(status=status, checks=checks, checked_at=checked_at)
