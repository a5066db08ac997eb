"""
API response models for the TLS reconciler HTTP boundary.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in core/models.py, which own the
internal result representation. Route handlers map between the two.

Field names are the snake_case keys existing callers of /export and
/update-tls already parse (total_processed, total_inserted, updated, errors).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from core.models import RemediationResult, SyncResult

# ---------------------------------------------------------------------------
# Engine operations
# ---------------------------------------------------------------------------


class InitResponse(BaseModel):
    """Response for GET /init."""

    model_config = ConfigDict(frozen=True)

    message: str = "Database initialized"


class ExportResponse(BaseModel):
    """Response for GET /export -- a completed snapshot sync."""

    model_config = ConfigDict(frozen=True)

    message: str = "Export completed"
    total_processed: int
    total_inserted: int
    pages_fetched: int
    timestamp: str

    @classmethod
    def from_result(cls, result: SyncResult) -> "ExportResponse":
        return cls(
            total_processed=result.total_processed,
            total_inserted=result.total_inserted,
            pages_fetched=result.pages_fetched,
            timestamp=result.timestamp,
        )


class UpdateTlsResponse(BaseModel):
    """Response for GET /update-tls -- one remediation pass.

    errors is None (and dropped from the JSON body) when every attempted
    update succeeded, including the empty-batch case.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    updated: int
    errors: Optional[list[str]] = None
    timestamp: str

    @classmethod
    def from_result(cls, result: RemediationResult) -> "UpdateTlsResponse":
        if result.attempted == 0:
            message = "No hostnames need TLS version update"
        else:
            message = "TLS update completed"
        return cls(
            message=message,
            updated=result.updated,
            errors=list(result.errors) or None,
            timestamp=result.timestamp,
        )


class StatusResponse(BaseModel):
    """Response for GET /status.

    The snapshot counters are None when the schema has not been initialized.
    """

    model_config = ConfigDict(frozen=True)

    export_enabled: bool
    update_enabled: bool
    total_records: Optional[int] = None
    pending_updates: Optional[int] = None
    timestamp: str


class IndexResponse(BaseModel):
    """Response for GET / -- service name and endpoint listing."""

    model_config = ConfigDict(frozen=True)

    message: str = "Hostname Manager"
    endpoints: list[str]


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
