"""
Audit router for starting site audits and reading their results.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, BackgroundTasks, Depends, Query, Request
from pydantic import BaseModel, ValidationError

from config import settings
from routers.rate_limit import enforce_audit_quota
from services.audit import process_site_audit
from services.audit_queue import enqueue_audit_job
from services.comparison import (
    NoAuditHistoryError,
    TrendPeriod,
    compare_audits,
    compare_with_previous,
    load_trends,
    summarize_audit,
)
from services.modules.types import ModuleId
from services.persistence import AuditNotFoundError, AuditStore, PersistenceError, SqlAuditStore
from services.records import ALL_MODULES, AuditRequest

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateAuditRequest(BaseModel):
    target: str
    user_id: str
    modules: Optional[List[ModuleId]] = None
    options: dict = {}


class CreateAuditResponse(BaseModel):
    audit_id: str
    status: str


class AuditProgressResponse(BaseModel):
    status: str
    percent: int
    message: Optional[str] = None
    category: Optional[str] = None


def get_audit_store() -> AuditStore:
    return SqlAuditStore()


def _dispatch(audit_id: str, background_tasks: BackgroundTasks) -> None:
    if settings.USE_AUDIT_QUEUE:
        try:
            enqueue_audit_job(audit_id)
            return
        except Exception as exc:
            logger.warning("Audit queue unavailable for %s, running in-process: %s", audit_id, exc)
    background_tasks.add_task(process_site_audit, audit_id)


@router.post("", response_model=CreateAuditResponse)
async def start_audit(
    request: CreateAuditRequest,
    http_request: Request,
    background_tasks: BackgroundTasks,
    store: AuditStore = Depends(get_audit_store),
):
    """Queue a new audit of a target site."""
    try:
        audit_request = AuditRequest(
            target=request.target,
            user_id=request.user_id,
            modules=tuple(request.modules) if request.modules is not None else ALL_MODULES,
            options=request.options,
        )
    except ValidationError as exc:
        messages = "; ".join(error["msg"] for error in exc.errors())
        raise HTTPException(status_code=422, detail=messages)

    await enforce_audit_quota(http_request, audit_request.user_id)

    try:
        record = await store.create_audit(audit_request, status="queued")
    except PersistenceError:
        logger.exception("Could not create audit for %s", request.target)
        raise HTTPException(status_code=500, detail="Could not create audit")

    _dispatch(record.id, background_tasks)
    return CreateAuditResponse(audit_id=record.id, status=record.status)


@router.get("")
async def list_audits(
    user_id: str = Query(...),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    store: AuditStore = Depends(get_audit_store),
):
    """List recent audits for a user."""
    records = await store.list_audits(user_id, limit=limit, offset=offset)
    return [
        {
            "audit_id": record.id,
            "target": record.target,
            "status": record.status,
            "overall_score": record.overall_score,
            "progress": record.progress,
            "created_at": record.created_at.isoformat() if record.created_at else None,
            "completed_at": record.completed_at.isoformat() if record.completed_at else None,
        }
        for record in records
    ]


@router.get("/trends")
async def get_audit_trends(
    target: str = Query(...),
    user_id: str = Query(...),
    period: TrendPeriod = Query(default="last30days"),
    store: AuditStore = Depends(get_audit_store),
):
    """Overall and per-module score history of one site."""
    try:
        trends = await load_trends(store, target, user_id, period)
    except NoAuditHistoryError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return trends.model_dump(mode="json")


@router.get("/{audit_id}")
async def get_audit(
    audit_id: str,
    user_id: str = Query(...),
    store: AuditStore = Depends(get_audit_store),
):
    """Full audit record including per-module results."""
    try:
        record = await store.get_audit(audit_id, user_id)
    except AuditNotFoundError:
        raise HTTPException(status_code=404, detail="Audit not found")
    return record.model_dump(mode="json")


@router.get("/{audit_id}/progress", response_model=AuditProgressResponse)
async def get_audit_progress(
    audit_id: str,
    user_id: str = Query(...),
    store: AuditStore = Depends(get_audit_store),
):
    """Lightweight progress view for polling clients."""
    try:
        record = await store.get_audit(audit_id, user_id)
    except AuditNotFoundError:
        raise HTTPException(status_code=404, detail="Audit not found")
    return AuditProgressResponse(
        status=record.status,
        percent=record.progress,
        message=record.status_message,
        category=record.current_category,
    )


@router.get("/{audit_id}/summary")
async def get_audit_summary(
    audit_id: str,
    user_id: str = Query(...),
    store: AuditStore = Depends(get_audit_store),
):
    """Scores per module and issue counts per severity."""
    try:
        record = await store.get_audit(audit_id, user_id)
    except AuditNotFoundError:
        raise HTTPException(status_code=404, detail="Audit not found")
    return summarize_audit(record).model_dump(mode="json")


@router.get("/{audit_id}/compare")
async def compare_audit(
    audit_id: str,
    user_id: str = Query(...),
    compare_with_id: Optional[str] = Query(default=None),
    store: AuditStore = Depends(get_audit_store),
):
    """Compare an audit with another one, or with the previous completed audit of its site."""
    try:
        record = await store.get_audit(audit_id, user_id)
    except AuditNotFoundError:
        raise HTTPException(status_code=404, detail="Audit not found")

    if compare_with_id:
        try:
            other = await store.get_audit(compare_with_id, user_id)
        except AuditNotFoundError:
            raise HTTPException(status_code=404, detail="Comparison audit not found")
        comparison = compare_audits(record, other)
    else:
        try:
            comparison = await compare_with_previous(store, record)
        except NoAuditHistoryError:
            raise HTTPException(status_code=404, detail="No previous audit found for comparison")
    return comparison.model_dump(mode="json")
