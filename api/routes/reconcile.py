"""
api/routes/reconcile.py -- Trigger and status routes for the reconcile engine.

Routes:
  GET /            -- service name and endpoint listing
  GET /init        -- create the snapshot table and indexes (idempotent)
  GET /export      -- run a full snapshot sync        (requires ENABLE_EXPORT)
  GET /update-tls  -- run one remediation pass         (requires ENABLE_UPDATE)
  GET /status      -- component switches and snapshot counters

Paths and methods are the ones existing cron triggers and dashboards
already call. The enable switches are checked here, at the
boundary; a disabled component answers 403 with the standard error envelope.

Handlers are plain `def`: the engine makes blocking HTTP and DB calls, and
FastAPI runs sync handlers in its thread pool.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter, trigger_limit
from api.models import ErrorDetail, ExportResponse, IndexResponse, InitResponse, StatusResponse, UpdateTlsResponse
from core.reconcile import ReconcileEngine

logger = logging.getLogger("tlsreconciler.api")

router = APIRouter()

_ENDPOINTS = [
    "GET /init - Initialize database",
    "GET /export - Export custom hostnames (if enabled)",
    "GET /update-tls - Update TLS versions (if enabled)",
    "GET /status - Check component status",
]


def _disabled(component: str, env_var: str) -> HTTPException:
    return HTTPException(
        status_code=403,
        detail=ErrorDetail(
            code="component_disabled",
            message=f"The {component} component is disabled.",
            detail=f"Set {env_var}=true to enable it.",
        ).model_dump(),
    )


@router.get("/", response_model=IndexResponse)
def index() -> IndexResponse:
    return IndexResponse(endpoints=_ENDPOINTS)


@router.get("/init", response_model=InitResponse)
def init_schema(request: Request) -> InitResponse:
    """Create the custom_hostnames table and indexes. Safe to call repeatedly."""
    engine: ReconcileEngine = request.app.state.engine
    engine.init_schema()
    logger.info("Snapshot schema initialized")
    return InitResponse()


@router.get("/export", response_model=ExportResponse)
@limiter.limit(trigger_limit)
def export_hostnames(request: Request) -> ExportResponse:
    """Run a full snapshot sync.

    A failed page aborts the whole sync (SyncError -> 502 via the handler in
    api/main.py). Pages stored before the failure are kept.
    """
    engine: ReconcileEngine = request.app.state.engine
    if not engine.sync_enabled:
        raise _disabled("export", "ENABLE_EXPORT")
    result = engine.run_snapshot_sync()
    logger.info(
        "Export completed: %d processed, %d written, %d page(s)",
        result.total_processed,
        result.total_inserted,
        result.pages_fetched,
    )
    return ExportResponse.from_result(result)


@router.get("/update-tls", response_model=UpdateTlsResponse, response_model_exclude_none=True)
@limiter.limit(trigger_limit)
def update_tls(request: Request) -> UpdateTlsResponse:
    """Run one remediation pass over at most one batch of flagged hostnames.

    Always 200 when the store is readable; per-hostname failures are listed
    in `errors`. Re-invoke to drain a backlog larger than one batch.
    """
    engine: ReconcileEngine = request.app.state.engine
    if not engine.remediation_enabled:
        raise _disabled("update", "ENABLE_UPDATE")
    result = engine.run_remediation_pass()
    return UpdateTlsResponse.from_result(result)


@router.get("/status", response_model=StatusResponse)
def status(request: Request) -> StatusResponse:
    engine: ReconcileEngine = request.app.state.engine
    store = request.app.state.store
    total_records = pending_updates = None
    try:
        total_records = store.count()
        pending_updates = store.count_non_compliant()
    except SQLAlchemyError as e:
        # Most often: /init has not been called yet.
        logger.warning("Snapshot counters unavailable: %s", e)
    return StatusResponse(
        export_enabled=engine.sync_enabled,
        update_enabled=engine.remediation_enabled,
        total_records=total_records,
        pending_updates=pending_updates,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
