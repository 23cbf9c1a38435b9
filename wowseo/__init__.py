"""wowseo

Blockchain indexing and on-chain tool billing for the WowSeoWeb3 dashboard
"""

from wowseo.core.chain_client import (
    ChainClient,
    Web3ChainClient,
    Web3HTTPChainClient,
    resolve_rpc_url,
)
from wowseo.core.database_service import DatabaseService
from wowseo.core.event_parser import EventParser
from wowseo.core.indexer_config import IndexerSettings, LogFilters
from wowseo.core.indexer_service import IndexerService
from wowseo.core.monitoring import IndexerMonitoring, TTLCache
from wowseo.core.payment_service import PaymentService
from wowseo.core.pricing import ToolName, compute_price, derive_tool_id, tool_id_for
from wowseo.core.scheduler import IndexerScheduler
from wowseo.core.tools_contract_service import (
    ConnectionState,
    ToolsContractService,
    Web3HTTPToolsContractService,
)
from wowseo.core.types import (
    BatchResult,
    BatchStatus,
    DataType,
    HealthStatus,
    IndexerMetrics,
    IndexerStatus,
    PriceQuote,
    SystemMetrics,
)
from wowseo.utils.error_utils import (
    ConfigurationError,
    DataIntegrityError,
    IndexerNotFoundError,
    PaymentError,
    PaymentErrorKind,
    TransientChainError,
    WowSeoError,
)
from wowseo.utils.log import get_default_logger

__all__ = [
    "ChainClient",
    "Web3ChainClient",
    "Web3HTTPChainClient",
    "resolve_rpc_url",
    "DatabaseService",
    "EventParser",
    "IndexerSettings",
    "LogFilters",
    "IndexerService",
    "IndexerMonitoring",
    "TTLCache",
    "IndexerScheduler",
    # Billing
    "PaymentService",
    "ToolsContractService",
    "Web3HTTPToolsContractService",
    "ConnectionState",
    "ToolName",
    "compute_price",
    "derive_tool_id",
    "tool_id_for",
    # Types
    "BatchResult",
    "BatchStatus",
    "DataType",
    "HealthStatus",
    "IndexerMetrics",
    "IndexerStatus",
    "PriceQuote",
    "SystemMetrics",
    # Errors
    "WowSeoError",
    "TransientChainError",
    "DataIntegrityError",
    "ConfigurationError",
    "IndexerNotFoundError",
    "PaymentError",
    "PaymentErrorKind",
    "get_default_logger",
]
