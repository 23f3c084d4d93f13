"""
HTTP API consumed by the dashboard.

Callers are authorized upstream; handlers receive business parameters
only. Manual triggers return immediately: 202 when accepted, 409 when a
sync of the source is already running, 422 when the source is not
configured.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response

from campaign_sync import __version__
from campaign_sync.bootstrap import Services
from campaign_sync.core.errors import ConfigurationError, NotFoundError, SyncInProgressError
from campaign_sync.core.models import SyncType
from campaign_sync.observability.logger import get_logger
from campaign_sync.observability.metrics import generate_metrics, get_content_type
from campaign_sync.utils.validation import (
    ValidationError,
    build_rollup_filter,
    validate_limit,
    validate_source,
)

logger = get_logger(__name__)

sync_router = APIRouter(prefix="/sync", tags=["Sync"])
rollup_router = APIRouter(tags=["Rollup"])
ops_router = APIRouter(tags=["Ops"])


def get_services(request: Request) -> Services:
    return request.app.state.services


def _source_or_404(source: str):
    try:
        return validate_source(source)
    except ValidationError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None


# =======================
# SYNC
# =======================

@sync_router.post("/{source}", status_code=202)
def trigger_sync(
    source: str,
    triggered_by: Optional[str] = None,
    services: Services = Depends(get_services),
):
    """Start a manual sync of one source"""
    tag = _source_or_404(source)
    try:
        receipt = services.orchestrator.trigger(tag, SyncType.MANUAL, triggered_by)
    except SyncInProgressError as e:
        return JSONResponse(
            status_code=409,
            content={
                "error": e.code,
                "message": str(e),
                "source": tag.value,
                "elapsed_seconds": round(e.elapsed_seconds, 1),
            },
        )
    except ConfigurationError as e:
        return JSONResponse(
            status_code=422,
            content={"error": ConfigurationError.code, "message": str(e), "source": tag.value},
        )

    return {
        "accepted": True,
        "run_id": receipt.run_id,
        "source": receipt.source.value,
        "started_at": receipt.started_at.isoformat(),
    }


@sync_router.get("/progress")
def sync_progress(
    source: Optional[str] = None,
    services: Services = Depends(get_services),
):
    """Current state of one source, or of every source"""
    progress = services.orchestrator.progress
    if source is None:
        return {"sources": progress.snapshot()}

    tag = _source_or_404(source)
    snapshot = progress.snapshot(tag)
    last_run = services.sync_log.latest_run(tag)
    snapshot["last_run"] = last_run.model_dump(mode="json") if last_run else None
    return snapshot


@sync_router.get("/history")
def sync_history(
    limit: int = 20,
    source: Optional[str] = None,
    services: Services = Depends(get_services),
):
    """Most recent sync runs first"""
    try:
        limit = validate_limit(limit, max_limit=200)
        tag = validate_source(source) if source else None
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

    runs = services.sync_log.recent_runs(limit=limit, source=tag)
    return {"runs": [run.model_dump(mode="json") for run in runs], "count": len(runs)}


# =======================
# ROLLUP
# =======================

@rollup_router.get("/rollup")
def rollup(
    tenant_id: Optional[int] = None,
    campaign_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: Optional[str] = None,
    source: Optional[str] = None,
    page: int = Query(1),
    page_size: int = Query(50),
    sort: str = "desc",
    services: Services = Depends(get_services),
):
    """Tenant, campaign or record level rollup depending on the ids given"""
    try:
        rollup_filter = build_rollup_filter(
            tenant_id=tenant_id,
            campaign_id=campaign_id,
            start_date=start_date,
            end_date=end_date,
            status=status,
            source=source,
            page=page,
            page_size=page_size,
            sort=sort,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

    try:
        response = services.rollup_engine.query(rollup_filter)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None

    return response.model_dump(mode="json", exclude_none=True)


# =======================
# OPS
# =======================

@ops_router.get("/metrics")
def metrics():
    return Response(content=generate_metrics(), media_type=get_content_type())


@ops_router.get("/health")
def health():
    return {"status": "ok", "version": __version__}


def create_app(services: Services) -> FastAPI:
    """
    Build the API application around already-wired services.

    Args:
        services: Services from bootstrap.build_services (or test doubles)
    """
    app = FastAPI(title="campaign-sync", version=__version__)
    app.state.services = services
    app.include_router(sync_router)
    app.include_router(rollup_router)
    app.include_router(ops_router)
    return app
