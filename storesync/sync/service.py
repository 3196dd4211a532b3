"""
Background sync supervisor.

Starting a sync returns immediately; the run continues on a worker thread
whose Future is kept here so crashes are logged rather than lost.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from typing import Dict, Optional

from ..core.database import Database
from .models import SyncReport
from .orchestrator import PreparedSync, SyncOrchestrator
from .progress import ProgressTracker, SyncProgress
from .settings import SyncSettings

logger = logging.getLogger(__name__)

STARTED = 'started'
ALREADY_RUNNING = 'already running'


@dataclass
class StartResult:
    status: str
    message: str

    @property
    def started(self) -> bool:
        return self.status == STARTED


class SyncService:
    """Fire-and-forget sync runs with pollable progress."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        tracker: Optional[ProgressTracker] = None,
        max_workers: int = 4
    ):
        self.orchestrator = orchestrator
        self.tracker = tracker or ProgressTracker()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sync-run")
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def start_sync(self, connection_id: str, full: bool = False) -> StartResult:
        """
        Start a background sync for a connection. full=True ignores the
        stored cursors and resyncs everything.

        Raises:
            ConfigurationError: the connection cannot be synced at all
        """
        token = self.tracker.try_start(connection_id)
        if token is None:
            logger.info(f"Sync for {connection_id} already running, ignoring start request")
            return StartResult(status=ALREADY_RUNNING, message="Sync already in progress")

        try:
            prepared = self.orchestrator.prepare(connection_id)
        except Exception as e:
            self.tracker.fail(connection_id, token, str(e))
            raise

        self.tracker.update(connection_id, token, 5, "Full resync started" if full else "Sync started")
        future = self._executor.submit(self._run, connection_id, token, prepared, full)
        with self._lock:
            self._futures[connection_id] = future
        future.add_done_callback(partial(self._on_done, connection_id, token))

        logger.info(f"Background {'full resync' if full else 'sync'} started for {connection_id}")
        return StartResult(status=STARTED, message="Sync started in background")

    def _run(self, connection_id: str, token: str, prepared: PreparedSync, full: bool = False) -> SyncReport:
        report = self.orchestrator.execute(
            prepared,
            progress_callback=partial(self.tracker.update, connection_id, token),
            full=full
        )

        # Record-level errors still count as a completed sync
        if report.failed_entities:
            self.tracker.fail(connection_id, token, "; ".join(report.errors), report.to_dict())
        else:
            self.tracker.complete(connection_id, token, f"Sync complete! {report.summary()}", report.to_dict())
        return report

    def _on_done(self, connection_id: str, token: str, future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.error(f"Background sync for {connection_id} crashed: {error!r}")
            self.tracker.fail(connection_id, token, str(error))

    def get_status(self, connection_id: str) -> SyncProgress:
        return self.tracker.get(connection_id)

    def wait(self, connection_id: str, timeout: Optional[float] = None) -> Optional[SyncReport]:
        """Block until the connection's latest run ends. None if it was never started here."""
        with self._lock:
            future = self._futures.get(connection_id)
        if future is None:
            return None
        return future.result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


# Global service instance
_service: Optional[SyncService] = None
_service_lock = threading.Lock()


def get_sync_service(db: Optional[Database] = None) -> SyncService:
    """Get the global sync service, built from config.yaml on first use."""
    global _service
    with _service_lock:
        if _service is None:
            from ..core.config import get_config
            from ..core.crypto import load_vault
            from ..core.database import get_database

            settings = SyncSettings.from_config(get_config())
            orchestrator = SyncOrchestrator(db or get_database(), load_vault(), settings)
            _service = SyncService(
                orchestrator,
                ProgressTracker(settings.progress_retention_seconds),
                max_workers=settings.max_concurrent_syncs
            )
        return _service


def stop_sync_service(wait: bool = True) -> None:
    """Shut down the global sync service if it was started."""
    global _service
    with _service_lock:
        if _service is not None:
            _service.shutdown(wait=wait)
            _service = None
