"""
WowSeo test utils
"""

import logging
import threading
from typing import Dict, List, Optional, Set

from sqlalchemy.pool import StaticPool

from wowseo.core.chain_client import ChainClient
from wowseo.core.database_service import DatabaseService
from wowseo.core.types import ChainBlock, ChainLog, ChainReceipt, ChainTransaction
from wowseo.utils.error_utils import TransientChainError
from wowseo.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


TEST_NETWORK = "mainnet"


def create_test_database_service() -> DatabaseService:
    """
    Create a database service over a fresh in-memory SQLite database.

    :return: The database service with tables created.
    """
    db = DatabaseService(
        "sqlite://",
        engine_kwargs={
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        },
    )
    db.create_tables()
    return db


def make_tx_hash(block_number: int, index: int) -> str:
    return "0x" + f"{block_number:032x}{index:032x}"


def make_block_hash(block_number: int) -> str:
    return "0x" + f"{block_number:064x}"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeChainClient(ChainClient):
    """
    In-memory chain with a configurable head.
    Every block has txs_per_block transactions and one log per transaction.
    """

    def __init__(self, head: int, txs_per_block: int = 2):
        self.head = head
        self.txs_per_block = txs_per_block
        self.failing_blocks: Set[int] = set()
        self.fail_head = False
        self.requested_blocks: List[int] = []
        self._lock = threading.Lock()

    def _transactions(self, block_number: int) -> List[ChainTransaction]:
        return [
            ChainTransaction(
                tx_hash=make_tx_hash(block_number, i),
                block_number=block_number,
                from_address="0x" + "aa" * 20,
                to_address="0x" + "bb" * 20,
                # Above 2**64 to exercise arbitrary-precision storage.
                value=10**30 + block_number,
                gas_price=20 * 10**9,
                input="0x",
            )
            for i in range(self.txs_per_block)
        ]

    def get_block_number(self) -> int:
        if self.fail_head:
            raise TransientChainError("get_block_number: 429 Too Many Requests")
        return self.head

    def get_block(self, block_number: int, full_transactions: bool = False) -> ChainBlock:
        with self._lock:
            self.requested_blocks.append(block_number)
        if block_number in self.failing_blocks:
            raise TransientChainError(f"get_block({block_number}): read timed out")
        return ChainBlock(
            number=block_number,
            block_hash=make_block_hash(block_number),
            parent_hash=make_block_hash(block_number - 1),
            timestamp=1_700_000_000 + 12 * block_number,
            transactions=self._transactions(block_number) if full_transactions else [],
            transaction_count=self.txs_per_block,
        )

    def get_block_receipts(self, block_number: int) -> Dict[str, ChainReceipt]:
        return {
            tx.tx_hash: ChainReceipt(tx_hash=tx.tx_hash, gas_used=21000, status=1)
            for tx in self._transactions(block_number)
        }

    def get_logs(
        self,
        from_block: int,
        to_block: int,
        addresses: Optional[List[str]] = None,
        topics: Optional[List[str]] = None,
    ) -> List[ChainLog]:
        logs = []
        for block_number in range(from_block, to_block + 1):
            for i, tx in enumerate(self._transactions(block_number)):
                logs.append(
                    ChainLog(
                        block_number=block_number,
                        tx_hash=tx.tx_hash,
                        log_index=i,
                        address="0x" + "cc" * 20,
                        topics=["0x" + "dd" * 32],
                        data="0x",
                    )
                )
        return logs
