"""SQL models for indexers, ingested chain data, and tool payments."""

from typing import List, Optional

from sqlalchemy import JSON, BigInteger, String
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel

from wowseo.core.types import IndexerStatus, JobStatus, PaymentStatus

# uint256 max has 78 decimal digits.
UINT256_DIGITS = 78


class Uint256(TypeDecorator):
    """
    Arbitrary-precision unsigned integer column.
    Stored as a zero-padded decimal string so that no database loses precision
    and lexical order equals numeric order.
    """

    impl = String(UINT256_DIGITS)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = int(value)
        if value < 0:
            raise ValueError(f"Uint256 column cannot store negative value {value}")
        digits = str(value)
        if len(digits) > UINT256_DIGITS:
            raise ValueError(f"Value {value} does not fit in uint256")
        return digits.zfill(UINT256_DIGITS)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class Indexer(SQLModel, table=True):
    """ORM model for the indexers table, one row per ingestion job."""

    __tablename__ = "indexers"
    id: str = Field(primary_key=True, index=True)
    # None for system-owned indexers.
    user_id: Optional[str] = Field(default=None, index=True)
    name: str
    description: Optional[str] = None
    status: str = Field(default=IndexerStatus.INACTIVE.value, index=True)
    # Timestamps are UTC milliseconds.
    last_run: Optional[int] = Field(default=None, sa_type=BigInteger)
    created_at: int = Field(sa_type=BigInteger)
    updated_at: int = Field(sa_type=BigInteger)


class IndexerConfig(SQLModel, table=True):
    """ORM model for the indexer_configs table, key/value settings per indexer."""

    __tablename__ = "indexer_configs"
    indexer_id: str = Field(primary_key=True)
    key: str = Field(primary_key=True)
    value: str


class IndexerJob(SQLModel, table=True):
    """ORM model for the indexer_jobs table, one row per batch run."""

    __tablename__ = "indexer_jobs"
    id: str = Field(primary_key=True, index=True)
    indexer_id: str = Field(index=True)
    status: str = Field(default=JobStatus.PENDING.value)
    from_block: Optional[int] = Field(default=None, sa_type=Uint256)
    to_block: Optional[int] = Field(default=None, sa_type=Uint256)
    blocks_processed: int = Field(default=0, sa_type=BigInteger)
    transactions_processed: int = Field(default=0, sa_type=BigInteger)
    events_processed: int = Field(default=0, sa_type=BigInteger)
    error: Optional[str] = None
    created_at: int = Field(sa_type=BigInteger, index=True)
    started_at: Optional[int] = Field(default=None, sa_type=BigInteger)
    completed_at: Optional[int] = Field(default=None, sa_type=BigInteger)


class Block(SQLModel, table=True):
    """ORM model for the blocks table. id is '<network>:<block_number>'."""

    __tablename__ = "blocks"
    id: str = Field(primary_key=True, index=True)
    network: str = Field(index=True)
    block_number: int = Field(sa_type=Uint256, index=True)
    block_hash: str
    parent_hash: str
    # Chain timestamp in seconds.
    timestamp: int = Field(sa_type=BigInteger)
    transaction_count: int = 0


class Transaction(SQLModel, table=True):
    """ORM model for the transactions table. id is '<network>:<tx_hash>'."""

    __tablename__ = "transactions"
    id: str = Field(primary_key=True, index=True)
    network: str = Field(index=True)
    block_number: int = Field(sa_type=Uint256, index=True)
    tx_hash: str = Field(index=True)
    from_address: str
    to_address: Optional[str] = None
    value: int = Field(default=0, sa_type=Uint256)
    gas_price: int = Field(default=0, sa_type=Uint256)
    gas_used: Optional[int] = Field(default=None, sa_type=Uint256)
    status: Optional[int] = None
    input: str = ""


class Event(SQLModel, table=True):
    """ORM model for the events table. id is '<tx_hash>:<log_index>'."""

    __tablename__ = "events"
    id: str = Field(primary_key=True, index=True)
    network: str = Field(index=True)
    block_number: int = Field(sa_type=Uint256, index=True)
    tx_hash: str = Field(index=True)
    log_index: int = Field(sa_type=Uint256)
    address: str = Field(index=True)
    event_name: str = "Unknown"
    topics: List[str] = Field(default_factory=list, sa_type=JSON)
    data: str = ""
    args: Optional[dict] = Field(default=None, sa_type=JSON)


class ToolPayment(SQLModel, table=True):
    """ORM model for the tool_payments table, one row per payment submission."""

    __tablename__ = "tool_payments"
    id: str = Field(primary_key=True, index=True)
    user_id: str = Field(index=True)
    tool_ids: List[str] = Field(default_factory=list, sa_type=JSON)
    token_address: str
    chain_id: int
    amount: int = Field(default=0, sa_type=Uint256)
    transaction_hash: Optional[str] = Field(default=None, index=True)
    status: str = Field(default=PaymentStatus.PENDING.value, index=True)
    error: Optional[str] = None
    created_at: int = Field(sa_type=BigInteger)
    updated_at: int = Field(sa_type=BigInteger)
