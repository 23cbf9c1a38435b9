import os
import threading
import unittest
from unittest.mock import Mock, patch

from wowseo.core.database_service import LAST_PROCESSED_BLOCK_KEY, new_id, now_ms
from wowseo.core.indexer_service import IndexerService
from wowseo.core.models import Indexer
from wowseo.core.scheduler import IndexerScheduler
from wowseo.core.types import BatchResult, BatchStatus, ErrorKind, IndexerStatus
from wowseo.tests.utils import TEST_NETWORK, FakeChainClient, create_test_database_service
from wowseo.utils.error_utils import (
    ConfigurationError,
    IndexerNotFoundError,
    TransientChainError,
)


def _failed(indexer_id: str, kind: ErrorKind) -> BatchResult:
    return BatchResult(
        indexer_id=indexer_id,
        status=BatchStatus.FAILED,
        error=f"{kind.value} failure",
        error_kind=kind,
    )


def _completed(indexer_id: str) -> BatchResult:
    return BatchResult(indexer_id=indexer_id, status=BatchStatus.COMPLETED)


class TestIndexerScheduler(unittest.TestCase):
    """
    Test scheduling and retries with a mocked indexer service.
    """

    def setUp(self):
        self.db = create_test_database_service()
        self.indexer_service = Mock()
        self.scheduler = IndexerScheduler(
            self.indexer_service,
            self.db,
            interval_seconds=60,
            max_workers=2,
            max_attempts=3,
            retry_delay=0,
        )

    def _add_indexer(self, status: IndexerStatus) -> str:
        ts = now_ms()
        indexer = Indexer(
            id=new_id(), name=status.value, status=status.value, created_at=ts, updated_at=ts
        )
        self.db.create_indexer(indexer, {})
        return indexer.id

    def test_run_cycle_selects_scheduled_indexers(self):
        ids = {
            status: self._add_indexer(status)
            for status in (
                IndexerStatus.ACTIVE,
                IndexerStatus.PENDING,
                IndexerStatus.ERROR,
                IndexerStatus.INACTIVE,
            )
        }
        self.indexer_service.run_batch.side_effect = _completed

        results = self.scheduler.run_cycle()

        called = {c.args[0] for c in self.indexer_service.run_batch.call_args_list}
        self.assertEqual(
            called,
            {ids[IndexerStatus.ACTIVE], ids[IndexerStatus.PENDING], ids[IndexerStatus.ERROR]},
        )
        self.assertEqual(len(results), 3)

    def test_empty_cycle(self):
        self._add_indexer(IndexerStatus.INACTIVE)
        self.assertEqual(self.scheduler.run_cycle(), [])
        self.indexer_service.run_batch.assert_not_called()

    def test_transient_failure_retried(self):
        indexer_id = self._add_indexer(IndexerStatus.ACTIVE)
        self.indexer_service.run_batch.side_effect = [
            _failed(indexer_id, ErrorKind.TRANSIENT),
            _completed(indexer_id),
        ]
        results = self.scheduler.run_cycle()
        self.assertEqual(self.indexer_service.run_batch.call_count, 2)
        self.assertEqual(results[0].status, BatchStatus.COMPLETED)

    def test_transient_failure_gives_up(self):
        indexer_id = self._add_indexer(IndexerStatus.ACTIVE)
        self.indexer_service.run_batch.side_effect = lambda i: _failed(i, ErrorKind.TRANSIENT)
        results = self.scheduler.run_cycle()
        self.assertEqual(self.indexer_service.run_batch.call_count, 3)
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].indexer_id, indexer_id)
        self.assertEqual(results[0].status, BatchStatus.FAILED)

    def test_configuration_failure_not_retried(self):
        self._add_indexer(IndexerStatus.ERROR)
        self.indexer_service.run_batch.side_effect = lambda i: _failed(
            i, ErrorKind.CONFIGURATION
        )
        results = self.scheduler.run_cycle()
        self.assertEqual(self.indexer_service.run_batch.call_count, 1)
        self.assertEqual(results[0].error_kind, ErrorKind.CONFIGURATION)

    def test_deleted_indexer_skipped(self):
        indexer_id = self._add_indexer(IndexerStatus.ACTIVE)
        self.indexer_service.run_batch.side_effect = IndexerNotFoundError(indexer_id)
        self.assertEqual(self.scheduler.run_cycle(), [])

    def test_one_failing_indexer_does_not_block_others(self):
        ok_id = self._add_indexer(IndexerStatus.ACTIVE)
        bad_id = self._add_indexer(IndexerStatus.ACTIVE)
        self.indexer_service.run_batch.side_effect = lambda i: (
            _completed(i) if i == ok_id else _failed(i, ErrorKind.UNKNOWN)
        )
        results = {r.indexer_id: r for r in self.scheduler.run_cycle()}
        self.assertEqual(results[ok_id].status, BatchStatus.COMPLETED)
        self.assertEqual(results[bad_id].status, BatchStatus.FAILED)

    def test_start_stop(self):
        self._add_indexer(IndexerStatus.ACTIVE)
        ran = threading.Event()

        def run_batch(indexer_id):
            ran.set()
            return _completed(indexer_id)

        self.indexer_service.run_batch.side_effect = run_batch

        self.assertFalse(self.scheduler.is_running)
        self.scheduler.start()
        # A second start is a no-op.
        self.scheduler.start()
        self.assertTrue(ran.wait(5))
        self.assertTrue(self.scheduler.is_running)

        self.scheduler.stop(timeout=5)
        self.assertFalse(self.scheduler.is_running)
        self.scheduler.stop()
        self.assertEqual(self.indexer_service.run_batch.call_count, 1)

    @patch.dict(os.environ, {"RETRY_ATTEMPTS": "5", "RETRY_DELAY": "250"})
    def test_retry_settings_from_env(self):
        settings = IndexerScheduler.get_retry_settings_from_env()
        self.assertEqual(settings, {"max_attempts": 5, "retry_delay": 0.25})

    @patch.dict(os.environ, {"RETRY_ATTEMPTS": "three"})
    def test_invalid_retry_settings(self):
        with self.assertRaises(ConfigurationError):
            IndexerScheduler.get_retry_settings_from_env()


class TestSchedulerWithIndexerService(unittest.TestCase):
    """
    Test retries through a real indexer service whose node is unreachable at first.
    """

    def setUp(self):
        self.db = create_test_database_service()
        self.chain = FakeChainClient(head=105)

    def _run(self, factory: Mock):
        service = IndexerService(self.db, chain_client_factory=factory)
        indexer = service.create_indexer(
            name="retried", network=TEST_NETWORK, start_block=101, batch_size=10
        )
        service.start_indexer(indexer.id)
        scheduler = IndexerScheduler(service, self.db, max_attempts=3, retry_delay=0)
        return indexer.id, scheduler.run_cycle()

    def test_unreachable_node_retried(self):
        factory = Mock(
            side_effect=[
                ConnectionError("connection refused"),
                TransientChainError("Failed to connect to the mainnet node"),
                self.chain,
            ]
        )
        indexer_id, results = self._run(factory)

        self.assertEqual(factory.call_count, 3)
        self.assertEqual(results[0].status, BatchStatus.COMPLETED)
        self.assertEqual(
            self.db.get_config_map(indexer_id)[LAST_PROCESSED_BLOCK_KEY], "105"
        )

    def test_unreachable_node_gives_up(self):
        factory = Mock(side_effect=ConnectionError("connection refused"))
        _, results = self._run(factory)

        self.assertEqual(factory.call_count, 3)
        self.assertEqual(results[0].status, BatchStatus.FAILED)
        self.assertEqual(results[0].error_kind, ErrorKind.TRANSIENT)


if __name__ == "__main__":
    unittest.main()
