"""
Persistence for indexers, their configuration and jobs,
ingested chain data, and tool payments.
"""

import logging
import os
import uuid
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd
from dotenv import load_dotenv
from sqlalchemy import func, or_, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select

from wowseo.core.models import (
    Block,
    Event,
    Indexer,
    IndexerConfig,
    IndexerJob,
    ToolPayment,
    Transaction,
)
from wowseo.core.types import IndexerStatus, JobStatus
from wowseo.utils.error_utils import (
    DataIntegrityError,
    IndexerNotFoundError,
    check_for_missing_env_vars,
)
from wowseo.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


# Config key holding the resume cursor.
LAST_PROCESSED_BLOCK_KEY = "lastProcessedBlock"


def now_ms() -> int:
    """Current UTC time in milliseconds."""
    return int(pd.Timestamp.now(tz="UTC").timestamp() * 1000)


def new_id() -> str:
    return uuid.uuid4().hex


class DatabaseService:
    """
    Relational store accessed through SQLModel sessions.
    """

    def __init__(self, db_url: str, engine_kwargs: dict | None = None):
        if engine_kwargs is None:
            engine_kwargs = {}

        self.db_engine = create_engine(db_url, **engine_kwargs)

    @staticmethod
    def get_init_args_from_env(dotenv_path: Union[str, None] = None) -> dict:
        # Load .env file if it exists.
        if dotenv_path:
            load_dotenv(dotenv_path, verbose=True, override=True)
        init_args = {"db_url": os.getenv("WOWSEO_DATABASE_URL")}
        check_for_missing_env_vars(init_args)
        return init_args

    @staticmethod
    def create_instance_from_env(
        dotenv_path: Union[str, None] = None
    ) -> "DatabaseService":
        return DatabaseService(**DatabaseService.get_init_args_from_env(dotenv_path))

    def _session(self) -> Session:
        # Returned rows stay readable after the session closes.
        return Session(self.db_engine, expire_on_commit=False)

    def create_tables(self):
        SQLModel.metadata.create_all(self.db_engine)

    def health_check(self) -> bool:
        """
        Check database connectivity.

        :return: True if a trivial query succeeds.
        """
        try:
            with self.db_engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            _LOG.error("Database health check failed: %s", e)
            return False

    # Indexers

    def create_indexer(self, indexer: Indexer, configs: Dict[str, str]) -> Indexer:
        """
        Create an indexer together with its configuration rows.

        :param indexer: The indexer row.
        :param configs: Config key -> value.
        :return: The stored indexer.
        """
        with self._session() as session:
            session.add(indexer)
            for key, value in configs.items():
                session.add(IndexerConfig(indexer_id=indexer.id, key=key, value=value))
            try:
                session.commit()
            except IntegrityError as e:
                raise DataIntegrityError(f"Indexer {indexer.id} already exists") from e
        _LOG.info("Created indexer %s (%s)", indexer.id, indexer.name)
        return indexer

    def get_indexer(self, indexer_id: str) -> Optional[Indexer]:
        with self._session() as session:
            return session.get(Indexer, indexer_id)

    def list_indexers(self, statuses: Optional[Iterable[str]] = None) -> List[Indexer]:
        """
        List indexers.

        :param statuses: If given, only indexers in these statuses.
        :return: The indexers ordered by creation time.
        """
        with self._session() as session:
            statement = select(Indexer).order_by(Indexer.created_at)
            if statuses is not None:
                statement = statement.where(
                    Indexer.status.in_([str(getattr(s, "value", s)) for s in statuses])
                )
            return list(session.exec(statement).all())

    def update_indexer_status(
        self, indexer_id: str, status: IndexerStatus, last_run: Optional[int] = None
    ) -> Indexer:
        with self._session() as session:
            indexer = session.get(Indexer, indexer_id)
            if indexer is None:
                raise IndexerNotFoundError(indexer_id)
            indexer.status = status.value
            if last_run is not None:
                indexer.last_run = last_run
            indexer.updated_at = now_ms()
            session.add(indexer)
            session.commit()
            return indexer

    def delete_indexer(self, indexer_id: str) -> bool:
        """
        Delete an indexer with its configs and jobs.

        :param indexer_id: The indexer id.
        :return: True if the indexer existed.
        """
        with self._session() as session:
            indexer = session.get(Indexer, indexer_id)
            if indexer is None:
                return False
            for config in session.exec(
                select(IndexerConfig).where(IndexerConfig.indexer_id == indexer_id)
            ).all():
                session.delete(config)
            for job in session.exec(
                select(IndexerJob).where(IndexerJob.indexer_id == indexer_id)
            ).all():
                session.delete(job)
            session.delete(indexer)
            session.commit()
        _LOG.info("Deleted indexer %s", indexer_id)
        return True

    def count_indexers_by_status(self) -> Dict[str, int]:
        with self._session() as session:
            rows = session.exec(
                select(Indexer.status, func.count()).group_by(Indexer.status)
            ).all()
            return {status: int(count) for status, count in rows}

    # Configs

    def get_config_map(self, indexer_id: str) -> Dict[str, str]:
        with self._session() as session:
            configs = session.exec(
                select(IndexerConfig).where(IndexerConfig.indexer_id == indexer_id)
            ).all()
            return {c.key: c.value for c in configs}

    def set_config(self, indexer_id: str, key: str, value: str):
        with self._session() as session:
            session.merge(IndexerConfig(indexer_id=indexer_id, key=key, value=value))
            session.commit()

    # Jobs

    def create_job(
        self, indexer_id: str, from_block: Optional[int], to_block: Optional[int]
    ) -> IndexerJob:
        """
        Record the start of a batch.

        :param indexer_id: The indexer id.
        :param from_block: The first block of the batch.
        :param to_block: The last block of the batch.
        :return: The running job.
        """
        ts = now_ms()
        job = IndexerJob(
            id=new_id(),
            indexer_id=indexer_id,
            status=JobStatus.RUNNING.value,
            from_block=from_block,
            to_block=to_block,
            created_at=ts,
            started_at=ts,
        )
        with self._session() as session:
            session.add(job)
            session.commit()
        return job

    def list_jobs(self, indexer_id: str, limit: int = 10) -> List[IndexerJob]:
        with self._session() as session:
            statement = (
                select(IndexerJob)
                .where(IndexerJob.indexer_id == indexer_id)
                .order_by(IndexerJob.created_at.desc())
                .limit(limit)
            )
            return list(session.exec(statement).all())

    def mark_batch_failed(
        self, indexer_id: str, job_id: Optional[str], error: str
    ) -> None:
        """
        Record a failed batch: the job fails and the indexer goes to error.
        The cursor is left untouched.

        :param indexer_id: The indexer id.
        :param job_id: The job id, if a job was created.
        :param error: The error message.
        """
        ts = now_ms()
        with self._session() as session:
            if job_id is not None:
                job = session.get(IndexerJob, job_id)
                if job is not None:
                    job.status = JobStatus.FAILED.value
                    job.error = error
                    job.completed_at = ts
                    session.add(job)
            indexer = session.get(Indexer, indexer_id)
            if indexer is not None:
                indexer.status = IndexerStatus.ERROR.value
                indexer.updated_at = ts
                session.add(indexer)
            session.commit()

    def get_blocks_processed(
        self, indexer_id: Optional[str] = None, since: Optional[int] = None
    ) -> int:
        """
        Sum blocks processed by completed jobs.

        :param indexer_id: Restrict to one indexer. None for all.
        :param since: Restrict to jobs completed at or after this time in ms.
        :return: The block count.
        """
        with self._session() as session:
            statement = select(
                func.coalesce(func.sum(IndexerJob.blocks_processed), 0)
            ).where(IndexerJob.status == JobStatus.COMPLETED.value)
            if indexer_id is not None:
                statement = statement.where(IndexerJob.indexer_id == indexer_id)
            if since is not None:
                statement = statement.where(IndexerJob.completed_at >= since)
            return int(session.exec(statement).one())

    def get_processed_totals(self, indexer_id: str) -> Dict[str, int]:
        """
        Sum the rows written by the completed jobs of an indexer.

        :param indexer_id: The indexer id.
        :return: A dict with blocks, transactions and events entries.
        """
        with self._session() as session:
            blocks, transactions, events = session.exec(
                select(
                    func.coalesce(func.sum(IndexerJob.blocks_processed), 0),
                    func.coalesce(func.sum(IndexerJob.transactions_processed), 0),
                    func.coalesce(func.sum(IndexerJob.events_processed), 0),
                )
                .where(IndexerJob.indexer_id == indexer_id)
                .where(IndexerJob.status == JobStatus.COMPLETED.value)
            ).one()
            return {
                "blocks": int(blocks),
                "transactions": int(transactions),
                "events": int(events),
            }

    def get_job_counts(self, indexer_id: str) -> Dict[str, int]:
        """
        Count finished jobs by status.

        :param indexer_id: The indexer id.
        :return: Job status -> count.
        """
        with self._session() as session:
            rows = session.exec(
                select(IndexerJob.status, func.count())
                .where(IndexerJob.indexer_id == indexer_id)
                .group_by(IndexerJob.status)
            ).all()
            return {status: int(count) for status, count in rows}

    # Chain data

    def upsert_rows(self, rows: Sequence[SQLModel]) -> int:
        """
        Insert or replace rows keyed by their primary keys.

        :param rows: Block, Transaction or Event rows.
        :return: The number of rows written.
        """
        with self._session() as session:
            for row in rows:
                session.merge(row)
            try:
                session.commit()
            except IntegrityError as e:
                raise DataIntegrityError(str(e.orig)) from e
        return len(rows)

    def commit_batch(
        self,
        indexer_id: str,
        job_id: str,
        expected_cursor: Optional[int],
        new_cursor: int,
        blocks: Sequence[Block] = (),
        transactions: Sequence[Transaction] = (),
        events: Sequence[Event] = (),
        blocks_processed: Optional[int] = None,
    ) -> None:
        """
        Atomically persist a batch and advance the cursor.
        Data upserts, the cursor, the indexer status and the job completion
        are written in one transaction.

        :param indexer_id: The indexer id.
        :param job_id: The running job of the batch.
        :param expected_cursor: The cursor the batch started from. None if unset.
        :param new_cursor: The last block of the batch.
        :param blocks: Block rows.
        :param transactions: Transaction rows.
        :param events: Event rows.
        :param blocks_processed: Size of the block range. Defaults to len(blocks).
        """
        if blocks_processed is None:
            blocks_processed = len(blocks)
        ts = now_ms()
        with self._session() as session:
            cursor_row = session.exec(
                select(IndexerConfig)
                .where(IndexerConfig.indexer_id == indexer_id)
                .where(IndexerConfig.key == LAST_PROCESSED_BLOCK_KEY)
                .with_for_update()
            ).first()
            stored_cursor = int(cursor_row.value) if cursor_row is not None else None
            if stored_cursor != expected_cursor:
                raise DataIntegrityError(
                    f"Cursor of indexer {indexer_id} moved from {expected_cursor} "
                    f"to {stored_cursor} while the batch was in flight"
                )
            if stored_cursor is not None and new_cursor < stored_cursor:
                raise DataIntegrityError(
                    f"Cursor of indexer {indexer_id} cannot move back "
                    f"from {stored_cursor} to {new_cursor}"
                )

            indexer = session.get(Indexer, indexer_id)
            if indexer is None:
                raise IndexerNotFoundError(indexer_id)

            for row in [*blocks, *transactions, *events]:
                session.merge(row)

            if cursor_row is None:
                cursor_row = IndexerConfig(
                    indexer_id=indexer_id, key=LAST_PROCESSED_BLOCK_KEY, value=""
                )
            cursor_row.value = str(new_cursor)
            session.add(cursor_row)

            indexer.status = IndexerStatus.ACTIVE.value
            indexer.last_run = ts
            indexer.updated_at = ts
            session.add(indexer)

            job = session.get(IndexerJob, job_id)
            if job is not None:
                job.status = JobStatus.COMPLETED.value
                job.blocks_processed = blocks_processed
                job.transactions_processed = len(transactions)
                job.events_processed = len(events)
                job.completed_at = ts
                session.add(job)

            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise DataIntegrityError(str(e.orig)) from e

    def get_blocks(self, network: str, from_block: int, to_block: int) -> List[Block]:
        with self._session() as session:
            statement = (
                select(Block)
                .where(Block.network == network)
                .where(Block.block_number >= from_block)
                .where(Block.block_number <= to_block)
                .order_by(Block.block_number)
            )
            return list(session.exec(statement).all())

    # pylint: disable-msg=too-many-arguments
    def query_chain_data(
        self,
        model,
        network: Optional[str] = None,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
        address: Optional[str] = None,
        from_timestamp: Optional[int] = None,
        to_timestamp: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[SQLModel], int]:
        """
        Page through stored chain data, newest blocks first.

        :param model: Block, Transaction or Event.
        :param network: Restrict to one network.
        :param from_block: The first block, inclusive.
        :param to_block: The last block, inclusive.
        :param address: Sender or recipient of transactions, emitter of events.
            Ignored for blocks.
        :param from_timestamp: Earliest block time in seconds. Blocks only.
        :param to_timestamp: Latest block time in seconds. Blocks only.
        :param limit: Page size.
        :param offset: Rows to skip.
        :return: The page of rows and the total number of matching rows.
        """
        conditions = []
        if network is not None:
            conditions.append(model.network == network)
        if from_block is not None:
            conditions.append(model.block_number >= from_block)
        if to_block is not None:
            conditions.append(model.block_number <= to_block)
        if address and model is Transaction:
            address = address.lower()
            conditions.append(
                or_(
                    func.lower(Transaction.from_address) == address,
                    func.lower(Transaction.to_address) == address,
                )
            )
        elif address and model is Event:
            conditions.append(func.lower(Event.address) == address.lower())
        if model is Block:
            if from_timestamp is not None:
                conditions.append(Block.timestamp >= from_timestamp)
            if to_timestamp is not None:
                conditions.append(Block.timestamp <= to_timestamp)

        count_statement = select(func.count()).select_from(model)
        statement = select(model)
        for condition in conditions:
            count_statement = count_statement.where(condition)
            statement = statement.where(condition)
        statement = (
            statement.order_by(model.block_number.desc(), model.id)
            .offset(offset)
            .limit(limit)
        )
        with self._session() as session:
            total = session.exec(count_statement).one()
            rows = session.exec(statement).all()
            return list(rows), int(total)

    def count_rows(self, model, network: Optional[str] = None) -> int:
        """
        Count stored chain data rows.

        :param model: Block, Transaction or Event.
        :param network: Restrict to one network. None for all.
        :return: The row count.
        """
        with self._session() as session:
            statement = select(func.count()).select_from(model)
            if network is not None:
                statement = statement.where(model.network == network)
            return int(session.exec(statement).one())

    # Payments

    def create_payment(self, payment: ToolPayment) -> ToolPayment:
        with self._session() as session:
            session.add(payment)
            session.commit()
        return payment

    def update_payment(self, payment_id: str, **fields) -> ToolPayment:
        """
        Update payment fields.

        :param payment_id: The payment id.
        :param fields: Column values to set.
        :return: The updated payment.
        """
        with self._session() as session:
            payment = session.get(ToolPayment, payment_id)
            if payment is None:
                raise KeyError(f"Payment {payment_id} not found")
            for key, value in fields.items():
                setattr(payment, key, value)
            payment.updated_at = now_ms()
            session.add(payment)
            session.commit()
            return payment

    def list_payments(self, user_id: str) -> List[ToolPayment]:
        with self._session() as session:
            statement = (
                select(ToolPayment)
                .where(ToolPayment.user_id == user_id)
                .order_by(ToolPayment.created_at)
            )
            return list(session.exec(statement).all())
