"""
Sync API endpoints.

Starting a sync returns straight away; clients poll the status endpoint.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from ...core.exceptions import ConfigurationError
from ...sync.service import SyncService
from ..dependencies import sync_service
from ..schemas import SyncStartResponse, SyncStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/{connection_id}", response_model=SyncStartResponse)
def start_sync(
    connection_id: str,
    full: bool = Query(default=False, description="Ignore stored cursors and resync everything"),
    service: SyncService = Depends(sync_service)
):
    """Start a background sync for a connection."""
    try:
        result = service.start_sync(connection_id, full=full)
    except ConfigurationError as e:
        logger.warning(f"Cannot start sync for {connection_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    return SyncStartResponse(success=True, status=result.status, message=result.message)


@router.get("/{connection_id}/status", response_model=SyncStatus)
def get_sync_status(connection_id: str, service: SyncService = Depends(sync_service)):
    """Current progress, or an idle placeholder when no sync is known."""
    return SyncStatus(**service.get_status(connection_id).to_dict())
