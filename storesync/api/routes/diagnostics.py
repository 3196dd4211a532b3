"""
Diagnostics endpoint.
Compares vendor-reported sales with what the local line items add up to.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from ...core.database import Database
from ..dependencies import database
from ..schemas import DiagnosticsResponse, SalesMismatch

router = APIRouter(prefix="/diagnostics", tags=["diagnostics"])


@router.get("/{connection_id}", response_model=DiagnosticsResponse)
def get_diagnostics(
    connection_id: str,
    threshold: int = Query(default=5, ge=0),
    db: Database = Depends(database)
):
    if db.get_connection(connection_id) is None:
        raise HTTPException(status_code=404, detail=f"Connection {connection_id} not found")

    return DiagnosticsResponse(
        connection_id=connection_id,
        counts=db.count_rows(connection_id),
        threshold=threshold,
        mismatches=[SalesMismatch(**row) for row in db.get_sales_mismatches(connection_id, threshold)]
    )
