"""
Periodic execution of indexer batches.
"""

import concurrent.futures
import logging
import os
import threading
from typing import List, Optional

from wowseo.core.database_service import DatabaseService
from wowseo.core.indexer_service import IndexerService
from wowseo.core.types import BatchResult, IndexerStatus
from wowseo.utils.error_utils import (
    IndexerNotFoundError,
    TransientChainError,
    get_int_setting,
)
from wowseo.utils.log import get_default_logger
from wowseo.utils.retries import with_retries


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


DEFAULT_INTERVAL_SECONDS = 300
DEFAULT_MAX_WORKERS = 4
DEFAULT_RETRY_ATTEMPTS = 3
# Milliseconds.
DEFAULT_RETRY_DELAY = 1000

# Indexers the scheduler runs.
SCHEDULED_STATUSES = (IndexerStatus.ACTIVE, IndexerStatus.PENDING, IndexerStatus.ERROR)


class IndexerScheduler:
    """
    Runs one batch per scheduled indexer every interval.
    Different indexers run concurrently.
    Transient failures are retried with exponential backoff.
    """

    # pylint: disable-msg=too-many-arguments
    def __init__(
        self,
        indexer_service: IndexerService,
        database_service: DatabaseService,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        max_workers: int = DEFAULT_MAX_WORKERS,
        max_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY / 1000,
    ):
        self.indexer_service = indexer_service
        self.db = database_service
        self.interval_seconds = interval_seconds
        self.max_workers = max_workers
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._thread_lock = threading.Lock()

    @staticmethod
    def get_retry_settings_from_env() -> dict:
        """
        Read RETRY_ATTEMPTS and RETRY_DELAY (milliseconds).

        :return: Keyword arguments for the constructor.
        """
        return {
            "max_attempts": get_int_setting(
                "RETRY_ATTEMPTS", os.getenv("RETRY_ATTEMPTS"), DEFAULT_RETRY_ATTEMPTS
            ),
            "retry_delay": get_int_setting(
                "RETRY_DELAY", os.getenv("RETRY_DELAY"), DEFAULT_RETRY_DELAY
            )
            / 1000,
        }

    def _run_indexer(self, indexer_id: str) -> Optional[BatchResult]:
        last_result = {}

        def run_once() -> BatchResult:
            result = self.indexer_service.run_batch(indexer_id)
            last_result["result"] = result
            if result.retryable:
                raise TransientChainError(result.error)
            return result

        try:
            return with_retries(
                run_once,
                _LOG,
                max_attempts=self.max_attempts,
                delay=self.retry_delay,
                retry_on=(TransientChainError,),
            )
        except TransientChainError:
            _LOG.error(
                "Indexer %s: giving up after %s attempts", indexer_id, self.max_attempts
            )
            return last_result["result"]
        except IndexerNotFoundError:
            # Deleted since the cycle listed it.
            _LOG.warning("Indexer %s no longer exists", indexer_id)
            return None

    def run_cycle(self) -> List[BatchResult]:
        """
        Run one batch for every scheduled indexer.

        :return: The batch results.
        """
        indexers = self.db.list_indexers(SCHEDULED_STATUSES)
        if not indexers:
            _LOG.debug("No indexers to run")
            return []

        _LOG.info("Running %s indexer(s)", len(indexers))
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.max_workers
        ) as executor:
            futures = [executor.submit(self._run_indexer, i.id) for i in indexers]
            results = [future.result() for future in futures]
        return [r for r in results if r is not None]

    def _loop(self):
        while not self._stop_event.is_set():
            try:
                self.run_cycle()
            # Keep the schedule alive across failed cycles.
            except Exception as e:  # pylint: disable=broad-except
                _LOG.exception("Indexer scheduling cycle failed: %s", e)
            self._stop_event.wait(self.interval_seconds)

    def start(self):
        """
        Start running cycles on a background thread.
        The first cycle runs immediately.
        """
        with self._thread_lock:
            if self._thread is not None and self._thread.is_alive():
                _LOG.info("Scheduler is already running")
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._loop, name="IndexerScheduler", daemon=True
            )
            self._thread.start()
        _LOG.info("Scheduler started with interval %s s", self.interval_seconds)

    def stop(self, timeout: Optional[float] = None):
        """
        Stop the background thread. Safe to call when not running.

        :param timeout: Seconds to wait for the running cycle to finish.
        """
        with self._thread_lock:
            thread = self._thread
            self._thread = None
            self._stop_event.set()
        if thread is not None:
            thread.join(timeout)
            _LOG.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
