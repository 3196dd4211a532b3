"""
Sync orchestrator.

Loads a connection, builds its transport and runs the catalog, transactions
and accounts reconcilers concurrently. A failing reconciler never cancels
its siblings; its error lands in the SyncReport instead.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Optional

from ..core.crypto import CredentialVault
from ..core.database import Database
from ..core.exceptions import ConfigurationError
from .models import ENTITIES, Connection, EntityResult, SyncReport
from .reconciler import RECONCILERS
from .settings import SyncSettings
from .transports import build_transport
from .transports.base import Transport

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]

# Progress checkpoints
CONFIG_LOADED = 10
FAN_OUT = 20
ENTITY_START = {'catalog': 30, 'transactions': 45, 'accounts': 60}
AGGREGATING = 90
DONE = 100


@dataclass
class PreparedSync:
    """A connection whose credentials checked out, with its transport."""
    connection: Connection
    transport: Transport


class SyncOrchestrator:
    """Runs one sync per call; safe to share across connections."""

    def __init__(
        self,
        db: Database,
        vault: CredentialVault,
        settings: Optional[SyncSettings] = None,
        transport_factory: Callable[..., Transport] = build_transport
    ):
        self.db = db
        self.vault = vault
        self.settings = settings or SyncSettings()
        self.transport_factory = transport_factory

    def prepare(self, connection_id: str) -> PreparedSync:
        """
        Load the connection and build its transport.

        Raises:
            ConfigurationError: unknown connection, missing or invalid
                credentials, or an unknown transport mode
        """
        connection = self.db.get_connection(connection_id)
        if connection is None:
            raise ConfigurationError(f"Connection {connection_id} not found")
        if connection.credentials is None:
            raise ConfigurationError(f"Connection {connection_id} has no credentials configured")

        credentials = self.vault.decrypt_credentials(connection.id, connection.credentials)
        transport = self.transport_factory(connection, credentials, self.settings)
        logger.info(f"[{connection.id}] Prepared {connection.mode} sync for '{connection.name}'")
        return PreparedSync(connection=connection, transport=transport)

    def execute(
        self,
        prepared: PreparedSync,
        progress_callback: Optional[ProgressCallback] = None,
        full: bool = False
    ) -> SyncReport:
        """
        Run the three reconcilers and join on all of them.

        With full=True every entity is paged from the beginning, ignoring the
        stored cursors; upserts keep the result identical to an incremental run.
        """
        connection = prepared.connection
        start_time = time.time()
        report = SyncReport(connection_id=connection.id, mode=connection.mode, full=full)

        def notify(progress: int, message: str):
            if progress_callback:
                progress_callback(progress, message)

        notify(CONFIG_LOADED, f"Configuration loaded ({connection.mode}{', full resync' if full else ''})")

        try:
            notify(FAN_OUT, "Starting parallel sync...")
            with ThreadPoolExecutor(max_workers=len(ENTITIES), thread_name_prefix=f"sync-{connection.id}") as executor:
                futures = {}
                for entity in ENTITIES:
                    reconciler = RECONCILERS[entity](connection, prepared.transport, self.db, full=full)
                    notify(ENTITY_START[entity], f"Syncing {entity}...")
                    futures[executor.submit(reconciler.run)] = entity

                for future in as_completed(futures):
                    entity = futures[future]
                    try:
                        result = future.result()
                    except Exception as e:
                        logger.exception(f"[{connection.id}] {entity} sync failed")
                        # Bare exceptions still have to mark the entity failed
                        message = str(e) or type(e).__name__
                        result = EntityResult(error=message)
                        report.errors.append(f"{entity}: {message}")
                    setattr(report, entity, result)
        finally:
            prepared.transport.close()

        notify(AGGREGATING, "Aggregating results...")
        report.duration = round(time.time() - start_time, 3)

        logger.info(
            f"[{connection.id}] Sync finished in {report.duration}s - {report.summary()}"
            + (f" - failed: {', '.join(report.failed_entities)}" if report.errors else "")
        )
        notify(DONE, f"Sync complete! {report.summary()}")
        return report

    def run(
        self,
        connection_id: str,
        progress_callback: Optional[ProgressCallback] = None,
        full: bool = False
    ) -> SyncReport:
        """Prepare and execute in the calling thread."""
        return self.execute(self.prepare(connection_id), progress_callback, full=full)
