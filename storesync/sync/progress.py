"""
Per-connection sync progress.

Only the run holding a connection's token may write its entry, and a
connection that is already running cannot be started again. Entries live
in memory; losing them on restart just means "no sync in progress".
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field, asdict, replace
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

IDLE = 'idle'
RUNNING = 'running'
COMPLETED = 'completed'
ERROR = 'error'


@dataclass
class SyncProgress:
    """Progress tracking for one connection's sync."""
    status: str = IDLE
    progress: int = 0
    message: str = "No sync in progress"
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    error: Optional[str] = None
    report: Optional[Dict[str, Any]] = field(default=None)

    @property
    def is_running(self) -> bool:
        return self.status == RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ProgressTracker:
    """Thread-safe map of connection id to SyncProgress."""

    def __init__(self, retention_seconds: int = 3600):
        self.retention_seconds = retention_seconds
        self._entries: Dict[str, SyncProgress] = {}
        self._tokens: Dict[str, str] = {}
        self._lock = threading.Lock()

    def try_start(self, connection_id: str) -> Optional[str]:
        """
        Claim a connection for a new run.

        Returns:
            Run token to pass to later writes, or None if already running
        """
        with self._lock:
            self._evict_expired()
            entry = self._entries.get(connection_id)
            if entry and entry.is_running:
                return None

            token = uuid.uuid4().hex
            self._tokens[connection_id] = token
            self._entries[connection_id] = SyncProgress(
                status=RUNNING,
                progress=0,
                message="Sync queued",
                start_time=time.time(),
            )
            return token

    def _writable(self, connection_id: str, token: str) -> Optional[SyncProgress]:
        if self._tokens.get(connection_id) != token:
            logger.warning(f"Ignoring progress write for {connection_id} from a stale run")
            return None
        return self._entries.get(connection_id)

    def update(self, connection_id: str, token: str, progress: int, message: str) -> bool:
        with self._lock:
            entry = self._writable(connection_id, token)
            if entry is None or not entry.is_running:
                return False
            entry.progress = max(0, min(100, int(progress)))
            entry.message = message
            return True

    def complete(
        self,
        connection_id: str,
        token: str,
        message: str,
        report: Optional[Dict[str, Any]] = None
    ) -> bool:
        with self._lock:
            entry = self._writable(connection_id, token)
            if entry is None:
                return False
            entry.status = COMPLETED
            entry.progress = 100
            entry.message = message
            entry.end_time = time.time()
            entry.report = report
            return True

    def fail(
        self,
        connection_id: str,
        token: str,
        error: str,
        report: Optional[Dict[str, Any]] = None
    ) -> bool:
        with self._lock:
            entry = self._writable(connection_id, token)
            if entry is None:
                return False
            entry.status = ERROR
            entry.message = f"Sync failed: {error}"
            entry.error = error
            entry.end_time = time.time()
            entry.report = report
            return True

    def get(self, connection_id: str) -> SyncProgress:
        """Current entry (a copy), or an idle placeholder."""
        with self._lock:
            self._evict_expired()
            entry = self._entries.get(connection_id)
            return replace(entry) if entry else SyncProgress()

    def _evict_expired(self) -> None:
        cutoff = time.time() - self.retention_seconds
        expired = [
            cid for cid, entry in self._entries.items()
            if not entry.is_running and entry.end_time is not None and entry.end_time < cutoff
        ]
        for cid in expired:
            del self._entries[cid]
            self._tokens.pop(cid, None)
            logger.debug(f"Evicted finished progress entry for {cid}")
