"""
Connection API endpoints.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from ...core.config import get_config
from ...core.database import Database
from ...core.exceptions import ConfigurationError, PrefixNotFoundError, TransportError
from ...sync.connectivity import check_api_connection
from ...sync.discovery import discover_prefix
from ...sync.models import ApiCredentials, DatastoreCredentials
from ...sync.settings import SyncSettings
from ..dependencies import database
from ..schemas import (
    ConnectionSummary, ConnectionTestRequest, ConnectionTestResponse,
    DetectPrefixRequest, DetectPrefixResponse
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections", tags=["connections"])


@router.get("", response_model=List[ConnectionSummary])
def list_connections(db: Database = Depends(database)):
    """Stored connections, without credentials."""
    return [ConnectionSummary(**row) for row in db.list_connections()]


@router.post("/detect-prefix", response_model=DetectPrefixResponse)
def detect_prefix(request: DetectPrefixRequest):
    """Detect the WordPress table prefix of a database."""
    credentials = DatastoreCredentials(
        host=request.host,
        user=request.user,
        password=request.password,
        database=request.database,
        port=request.port
    )
    connect_timeout = get_config().get_int('direct_datastore', 'connect_timeout', default=10)

    try:
        result = discover_prefix(credentials, connect_timeout=connect_timeout)
    except PrefixNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TransportError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return DetectPrefixResponse(
        success=True,
        message=f"Detected prefix: {result.prefix}",
        **result.to_dict()
    )


@router.post("/test", response_model=ConnectionTestResponse)
def test_connection(request: ConnectionTestRequest):
    """Check REST API credentials by fetching a single product."""
    try:
        credentials = ApiCredentials.from_dict(request.model_dump())
        result = check_api_connection(credentials, SyncSettings.from_config(get_config()))
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TransportError as e:
        logger.warning(f"Connection test against {request.url} failed: {e}")
        raise HTTPException(
            status_code=400,
            detail=f"Failed to connect to WooCommerce store. Please check your credentials and URL. ({e})"
        )

    return ConnectionTestResponse(
        success=True,
        message="Connection test successful",
        **result.to_dict()
    )
