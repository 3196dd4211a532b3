"""
Health check endpoint.
"""

from fastapi import APIRouter, Depends

from ... import __version__
from ...core.database import Database
from ..dependencies import database
from ..schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health_check(db: Database = Depends(database)):
    """Check API health and database status."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        connections=len(db.list_connections())
    )
