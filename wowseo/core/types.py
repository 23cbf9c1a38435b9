"""
Core types for indexing, monitoring and pricing.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import pandas as pd


class IndexerStatus(str, Enum):
    """Indexer lifecycle status. Transitions are driven by start/stop/fail."""

    INACTIVE = "inactive"
    ACTIVE = "active"
    ERROR = "error"
    PENDING = "pending"


class JobStatus(str, Enum):
    """Status of a single run_batch invocation."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentStatus(str, Enum):
    """Status of a tool payment transaction."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class DataType(str, Enum):
    """Chain data an indexer ingests."""

    BLOCKS = "blocks"
    TRANSACTIONS = "transactions"
    EVENTS = "events"


class BatchStatus(str, Enum):
    """Outcome of run_batch."""

    COMPLETED = "completed"
    UP_TO_DATE = "up_to_date"
    FAILED = "failed"
    BUSY = "busy"


class ErrorKind(str, Enum):
    """Error taxonomy recorded on failed batches."""

    TRANSIENT = "transient"
    INTEGRITY = "integrity"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ChainTransaction:
    """
    Transaction structure as returned by the chain client.
    gas_used and status come from the receipt and may be missing.
    """

    tx_hash: str
    block_number: int
    from_address: str
    to_address: Optional[str]
    value: int
    gas_price: int
    input: str
    gas_used: Optional[int] = None
    status: Optional[int] = None


@dataclass(frozen=True)
class ChainBlock:
    """
    Block structure as returned by the chain client.
    """

    number: int
    block_hash: str
    parent_hash: str
    timestamp: int
    transactions: List[ChainTransaction] = field(default_factory=list)
    transaction_count: int = 0


@dataclass(frozen=True)
class ChainReceipt:
    """
    The receipt fields the indexer keeps for a transaction.
    """

    tx_hash: str
    gas_used: int
    status: Optional[int]


@dataclass(frozen=True)
class ChainLog:
    """
    Log (event) structure as returned by the chain client.
    """

    block_number: int
    tx_hash: str
    log_index: int
    address: str
    topics: List[str]
    data: str


@dataclass
class BatchResult:
    """
    Result of a single ingestion batch.
    The indexer layer reports failures here instead of raising.
    """

    indexer_id: str
    status: BatchStatus
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    chain_head: Optional[int] = None
    blocks_processed: int = 0
    transactions_processed: int = 0
    events_processed: int = 0
    latency_seconds: float = 0.0
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    job_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status in (BatchStatus.COMPLETED, BatchStatus.UP_TO_DATE)

    @property
    def retryable(self) -> bool:
        return self.error_kind == ErrorKind.TRANSIENT


@dataclass(frozen=True)
class PriceQuote:
    """
    Price of a tool selection in the smallest token unit.
    """

    subtotal: int
    final_price: int
    is_full_bundle_discount: bool


@dataclass
class IndexerMetrics:
    """
    Observational metrics for one indexer.
    """

    indexer_id: str
    name: str
    network: Optional[str]
    status: str
    last_run: Optional[str]
    last_processed_block: Optional[int]
    current_block: Optional[int]
    lag: Optional[int]
    blocks_processed: int
    transactions_processed: int
    events_processed: int
    processing_rate: float
    error_rate: float
    error_count: int
    last_batch_latency: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SystemMetrics:
    """
    Metrics aggregated across all indexers.
    """

    total_indexers: int
    indexers_by_status: Dict[str, int]
    active_indexers: int
    total_blocks_stored: int
    total_transactions_stored: int
    total_events_stored: int
    total_blocks_processed: int
    average_processing_rate: float
    system_uptime: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HealthCheck:
    name: str
    passed: bool
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"name": self.name, "status": "pass" if self.passed else "fail"}
        if self.message:
            result["message"] = self.message
        return result


@dataclass
class HealthStatus:
    """
    Health summary: healthy, degraded, or unhealthy, with the individual checks.
    """

    status: str
    checks: List[HealthCheck]
    checked_at: pd.Timestamp

    @property
    def is_healthy(self) -> bool:
        return self.status == "healthy"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "isHealthy": self.is_healthy,
            "checkedAt": str(self.checked_at),
            "checks": [c.to_dict() for c in self.checks],
        }
