"""
The indexer service runs resumable, idempotent ingestion batches
and manages the indexer lifecycle.
"""

import concurrent.futures
import dataclasses
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from wowseo.core.chain_client import ChainClient, normalize_network
from wowseo.core.database_service import DatabaseService, new_id, now_ms
from wowseo.core.event_parser import EventParser
from wowseo.core.indexer_config import (
    BATCH_SIZE_KEY,
    CONCURRENCY_KEY,
    DATA_TYPES_KEY,
    FILTERS_KEY,
    NETWORK_KEY,
    START_BLOCK_KEY,
    IndexerSettings,
    LogFilters,
    format_data_types,
    get_default_settings_from_env,
)
from wowseo.core.models import Block, Event, Indexer, Transaction
from wowseo.core.types import (
    BatchResult,
    BatchStatus,
    ChainBlock,
    DataType,
    ErrorKind,
    IndexerStatus,
)
from wowseo.utils.error_utils import (
    ConfigurationError,
    DataIntegrityError,
    IndexerNotFoundError,
    TransientChainError,
)
from wowseo.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


class MetricsRecorder(Protocol):
    """Receives the outcome of every batch."""

    def record_batch(self, result: BatchResult) -> None:
        ...


def classify_error(e: BaseException) -> ErrorKind:
    if isinstance(e, (TransientChainError, ConnectionError, TimeoutError)):
        return ErrorKind.TRANSIENT
    if isinstance(e, DataIntegrityError):
        return ErrorKind.INTEGRITY
    if isinstance(e, ConfigurationError):
        return ErrorKind.CONFIGURATION
    if isinstance(e, OperationalError):
        # Lost or refused database connection.
        return ErrorKind.TRANSIENT
    return ErrorKind.UNKNOWN


class IndexerService:
    """
    Runs ingestion batches for indexers.
    Batches for one indexer never overlap; different indexers may run concurrently.
    """

    def __init__(
        self,
        database_service: DatabaseService,
        chain_clients: Optional[Dict[str, ChainClient]] = None,
        chain_client_factory: Optional[Callable[[str], ChainClient]] = None,
        metrics_recorder: Optional[MetricsRecorder] = None,
        event_parser: Optional[EventParser] = None,
    ):
        """
        Initialize the service object.

        :param database_service: The persistence collaborator.
        :param chain_clients: Chain clients keyed by network name.
        :param chain_client_factory: Creates a client for a network
            missing from chain_clients.
        :param metrics_recorder: Receives batch results.
        :param event_parser: Decodes event logs.
        """
        self.db = database_service
        self.chain_clients = {
            normalize_network(k): v for k, v in (chain_clients or {}).items()
        }
        self.chain_client_factory = chain_client_factory
        self.metrics_recorder = metrics_recorder
        self.event_parser = event_parser if event_parser is not None else EventParser()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._clients_guard = threading.Lock()

    def get_chain_client(self, network: str) -> ChainClient:
        """
        Get the chain client for a network.

        :param network: The network name.
        :return: The client.
        """
        name = normalize_network(network)
        with self._clients_guard:
            client = self.chain_clients.get(name)
            if client is None and self.chain_client_factory is not None:
                client = self.chain_client_factory(name)
                self.chain_clients[name] = client
        if client is None:
            raise ConfigurationError(f"No chain client for network '{network}'")
        return client

    def _get_lock(self, indexer_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(indexer_id, threading.Lock())

    def run_batch(self, indexer_id: str) -> BatchResult:
        """
        Ingest the next block range of an indexer.
        Failures are reported in the result; only an unknown id raises.

        :param indexer_id: The indexer id.
        :return: The batch result.
        """
        indexer = self.db.get_indexer(indexer_id)
        if indexer is None:
            raise IndexerNotFoundError(indexer_id)

        lock = self._get_lock(indexer_id)
        if not lock.acquire(blocking=False):
            _LOG.info("Indexer %s is already running a batch", indexer_id)
            return BatchResult(indexer_id=indexer_id, status=BatchStatus.BUSY)
        try:
            result = self._run_batch_locked(indexer_id)
        finally:
            lock.release()

        if self.metrics_recorder is not None:
            self.metrics_recorder.record_batch(result)
        return result

    def _run_batch_locked(self, indexer_id: str) -> BatchResult:
        start_time = time.perf_counter()
        result = BatchResult(indexer_id=indexer_id, status=BatchStatus.FAILED)
        try:
            settings = IndexerSettings.from_config_map(self.db.get_config_map(indexer_id))
            client = self.get_chain_client(settings.network)
            result.chain_head = client.get_block_number()
            from_block = settings.next_block
            if from_block > result.chain_head:
                _LOG.debug(
                    "Indexer %s is up to date at block %s", indexer_id, result.chain_head
                )
                result.status = BatchStatus.UP_TO_DATE
                result.latency_seconds = time.perf_counter() - start_time
                return result

            to_block = min(from_block + settings.batch_size - 1, result.chain_head)
            result.from_block = from_block
            result.to_block = to_block
            result.job_id = self.db.create_job(indexer_id, from_block, to_block).id
            _LOG.info("Indexer %s: processing blocks %s-%s", indexer_id, from_block, to_block)

            blocks, transactions, events = self._fetch_range(
                client, settings, from_block, to_block
            )
            self.db.commit_batch(
                indexer_id,
                result.job_id,
                expected_cursor=settings.last_processed_block,
                new_cursor=to_block,
                blocks=blocks,
                transactions=transactions,
                events=events,
                blocks_processed=to_block - from_block + 1,
            )
            result.status = BatchStatus.COMPLETED
            result.blocks_processed = to_block - from_block + 1
            result.transactions_processed = len(transactions)
            result.events_processed = len(events)
        # The batch boundary: every failure is recorded and reported.
        except Exception as e:  # pylint: disable=broad-except
            result.status = BatchStatus.FAILED
            result.error = str(e)
            result.error_kind = classify_error(e)
            _LOG.error(
                "Indexer %s: batch %s-%s failed (%s): %s",
                indexer_id,
                result.from_block,
                result.to_block,
                result.error_kind.value,
                e,
            )
            try:
                self.db.mark_batch_failed(indexer_id, result.job_id, str(e))
            except SQLAlchemyError as db_error:
                _LOG.error("Indexer %s: failed to record failure: %s", indexer_id, db_error)
        result.latency_seconds = time.perf_counter() - start_time
        return result

    def _fetch_block(self, client: ChainClient, block_number: int, with_txs: bool) -> ChainBlock:
        block = client.get_block(block_number, full_transactions=with_txs)
        if not with_txs or not block.transactions:
            return block
        receipts = client.get_block_receipts(block_number)
        txs = []
        for tx in block.transactions:
            receipt = receipts.get(tx.tx_hash)
            if receipt is not None:
                tx = dataclasses.replace(tx, gas_used=receipt.gas_used, status=receipt.status)
            txs.append(tx)
        return dataclasses.replace(block, transactions=txs)

    def _fetch_range(
        self,
        client: ChainClient,
        settings: IndexerSettings,
        from_block: int,
        to_block: int,
    ) -> Tuple[List[Block], List[Transaction], List[Event]]:
        """
        Fetch and convert the chain data of an inclusive block range.

        :return: Block, transaction and event rows.
        """
        network = settings.network
        with_txs = DataType.TRANSACTIONS in settings.data_types
        blocks: List[Block] = []
        transactions: List[Transaction] = []
        events: List[Event] = []

        if DataType.BLOCKS in settings.data_types or with_txs:
            block_numbers = range(from_block, to_block + 1)
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=settings.concurrency
            ) as executor:
                # map() keeps block order and re-raises the first failure.
                chain_blocks = list(
                    executor.map(
                        lambda n: self._fetch_block(client, n, with_txs), block_numbers
                    )
                )
            for chain_block in chain_blocks:
                if DataType.BLOCKS in settings.data_types:
                    blocks.append(
                        Block(
                            id=f"{network}:{chain_block.number}",
                            network=network,
                            block_number=chain_block.number,
                            block_hash=chain_block.block_hash,
                            parent_hash=chain_block.parent_hash,
                            timestamp=chain_block.timestamp,
                            transaction_count=chain_block.transaction_count,
                        )
                    )
                for tx in chain_block.transactions:
                    transactions.append(
                        Transaction(
                            id=f"{network}:{tx.tx_hash}",
                            network=network,
                            block_number=tx.block_number,
                            tx_hash=tx.tx_hash,
                            from_address=tx.from_address,
                            to_address=tx.to_address,
                            value=tx.value,
                            gas_price=tx.gas_price,
                            gas_used=tx.gas_used,
                            status=tx.status,
                            input=tx.input,
                        )
                    )

        if DataType.EVENTS in settings.data_types:
            logs = client.get_logs(
                from_block,
                to_block,
                addresses=settings.filters.addresses or None,
                topics=settings.filters.topics or None,
            )
            for log in logs:
                event_name, args = self.event_parser.parse_event(log)
                events.append(
                    Event(
                        id=f"{log.tx_hash}:{log.log_index}",
                        network=network,
                        block_number=log.block_number,
                        tx_hash=log.tx_hash,
                        log_index=log.log_index,
                        address=log.address,
                        event_name=event_name,
                        topics=list(log.topics),
                        data=log.data,
                        args=args,
                    )
                )
        return blocks, transactions, events

    # pylint: disable-msg=too-many-arguments
    def create_indexer(
        self,
        name: str,
        network: str,
        user_id: Optional[str] = None,
        description: Optional[str] = None,
        start_block: Optional[int] = None,
        batch_size: Optional[int] = None,
        data_types=None,
        filters: Optional[LogFilters] = None,
        concurrency: Optional[int] = None,
    ) -> Indexer:
        """
        Create an inactive indexer with its configuration.
        Unset numeric settings take the START_BLOCK, BATCH_SIZE
        and CONCURRENCY environment defaults.

        :param name: Display name.
        :param network: The network to index.
        :param user_id: The owning user. None for system indexers.
        :param description: Optional description.
        :param start_block: The first block to ingest.
        :param batch_size: Blocks per batch.
        :param data_types: DataType values to ingest. Blocks only by default.
        :param filters: Log filters for events.
        :param concurrency: Parallel block fetches per batch.
        :return: The created indexer.
        """
        defaults = get_default_settings_from_env()
        configs = {
            NETWORK_KEY: normalize_network(network),
            START_BLOCK_KEY: str(
                start_block if start_block is not None else defaults[START_BLOCK_KEY]
            ),
            BATCH_SIZE_KEY: str(
                batch_size if batch_size is not None else defaults[BATCH_SIZE_KEY]
            ),
            CONCURRENCY_KEY: str(
                concurrency if concurrency is not None else defaults[CONCURRENCY_KEY]
            ),
            DATA_TYPES_KEY: format_data_types(data_types or [DataType.BLOCKS]),
            FILTERS_KEY: (filters or LogFilters()).to_json(),
        }
        # Reject invalid settings before anything is stored.
        IndexerSettings.from_config_map(configs)

        ts = now_ms()
        indexer = Indexer(
            id=new_id(),
            user_id=user_id,
            name=name,
            description=description,
            status=IndexerStatus.INACTIVE.value,
            created_at=ts,
            updated_at=ts,
        )
        return self.db.create_indexer(indexer, configs)

    def start_indexer(self, indexer_id: str) -> Indexer:
        indexer = self.db.update_indexer_status(indexer_id, IndexerStatus.PENDING)
        _LOG.info("Started indexer %s", indexer_id)
        return indexer

    def stop_indexer(self, indexer_id: str) -> Indexer:
        indexer = self.db.update_indexer_status(indexer_id, IndexerStatus.INACTIVE)
        _LOG.info("Stopped indexer %s", indexer_id)
        return indexer

    def delete_indexer(self, indexer_id: str) -> None:
        """
        Delete an indexer with its configuration and jobs.
        Ingested chain data is shared by network and is kept.

        :param indexer_id: The indexer id.
        """
        lock = self._get_lock(indexer_id)
        with lock:
            if not self.db.delete_indexer(indexer_id):
                raise IndexerNotFoundError(indexer_id)
        with self._locks_guard:
            self._locks.pop(indexer_id, None)

    def get_indexer_status(self, indexer_id: str, job_limit: int = 10) -> dict:
        """
        Get an indexer with its configuration and latest jobs.

        :param indexer_id: The indexer id.
        :param job_limit: The number of latest jobs to return.
        :return: A dict with indexer, config, and jobs entries.
        """
        indexer = self.db.get_indexer(indexer_id)
        if indexer is None:
            raise IndexerNotFoundError(indexer_id)
        return {
            "indexer": indexer.model_dump(),
            "config": self.db.get_config_map(indexer_id),
            "jobs": [job.model_dump() for job in self.db.list_jobs(indexer_id, job_limit)],
        }
