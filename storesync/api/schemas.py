"""
Pydantic schemas for API request/response validation.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict


# ==================== Sync Schemas ====================

class SyncStartResponse(BaseModel):
    """Response to a sync start request."""
    success: bool
    status: str
    message: str


class EntityResultSchema(BaseModel):
    fetched: int = 0
    created: int = 0
    updated: int = 0
    error_count: int = 0
    error: Optional[str] = None
    extra: Dict[str, int] = Field(default_factory=dict)


class SyncReportSchema(BaseModel):
    """Aggregated result of one sync run."""
    connection_id: str
    mode: str
    full: bool = False
    catalog: EntityResultSchema
    transactions: EntityResultSchema
    accounts: EntityResultSchema
    duration: float
    errors: List[str] = Field(default_factory=list)


class SyncStatus(BaseModel):
    """Sync progress for one connection."""
    status: str
    progress: int
    message: str
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    error: Optional[str] = None
    report: Optional[SyncReportSchema] = None


# ==================== Connection Schemas ====================

class DetectPrefixRequest(BaseModel):
    """Raw datastore credentials for prefix detection."""
    host: str = Field(min_length=1)
    user: str = Field(min_length=1)
    password: str = Field(min_length=1)
    database: str = Field(min_length=1)
    port: int = Field(default=3306, ge=1, le=65535)


class DetectPrefixResponse(BaseModel):
    success: bool
    prefix: str
    has_commerce_tables: bool
    alternatives: List[str] = Field(default_factory=list)
    tables: List[str] = Field(default_factory=list)
    message: str


class ConnectionTestRequest(BaseModel):
    """Candidate REST API credentials."""
    url: str = Field(min_length=1)
    consumer_key: str = Field(min_length=1)
    consumer_secret: str = Field(min_length=1)


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    store_url: str
    products_found: int


class ConnectionSummary(BaseModel):
    """Stored connection without credentials."""
    id: str
    name: str
    mode: str
    catalog_cursor: Optional[str] = None
    transactions_cursor: Optional[str] = None
    accounts_cursor: Optional[str] = None


# ==================== Diagnostics Schemas ====================

class SalesMismatch(BaseModel):
    remote_id: int
    name: str
    sku: Optional[str] = None
    vendor_sales: int
    local_sales: int
    difference: int


class DiagnosticsResponse(BaseModel):
    """Local row counts and sales counter mismatches for a connection."""
    connection_id: str
    counts: Dict[str, int]
    threshold: int
    mismatches: List[SalesMismatch]


# ==================== Generic Schemas ====================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    connections: int
