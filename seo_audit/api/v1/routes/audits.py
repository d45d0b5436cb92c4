"""
Audit API Routes

No business logic lives here.
Routes validate input, call the AuditService, return responses.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Annotated, AsyncIterator

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from seo_audit.engines.base import AuditProgress, AuditResults, AuditStatus, ProgressStatus
from seo_audit.services.audit_service import AuditService, InvalidAuditURLError, get_audit_service

logger = structlog.get_logger(__name__)
router = APIRouter()

AuditServiceDep = Annotated[AuditService, Depends(get_audit_service)]

PROGRESS_POLL_INTERVAL = 0.5


# ─────────────────────────────────────────────
# Request / Response Schemas
# ─────────────────────────────────────────────

class CreateAuditRequest(BaseModel):
    url: str = ""


class AuditResponse(BaseModel):
    id: str
    url: str
    status: AuditStatus
    created_at: datetime
    message: str = ""


class AuditDetailResponse(BaseModel):
    audit: AuditResults


class CancelResponse(BaseModel):
    id: str
    cancelled: bool


# ─────────────────────────────────────────────
# Routes
# ─────────────────────────────────────────────

@router.post(
    "",
    response_model=AuditResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a new SEO audit",
    description="Validates the URL and runs the audit in the background. Returns immediately with the audit ID.",
)
async def create_audit(
    request: CreateAuditRequest,
    background_tasks: BackgroundTasks,
    service: AuditServiceDep,
) -> AuditResponse:
    try:
        audit = await service.start_audit(request.url)
    except InvalidAuditURLError as e:
        raise HTTPException(status_code=400, detail=str(e))

    background_tasks.add_task(service.run_audit, audit.id, audit.url)

    return AuditResponse(
        id=audit.id,
        url=audit.url,
        status=audit.status,
        created_at=audit.created_at,
        message="Audit started. Follow /api/v1/audits/{id}/progress for live updates.",
    )


@router.get(
    "/{audit_id}",
    response_model=AuditDetailResponse,
    summary="Get audit status and results",
)
async def get_audit(audit_id: str, service: AuditServiceDep) -> AuditDetailResponse:
    audit = await service.get_audit(audit_id)
    if not audit:
        raise HTTPException(status_code=404, detail="Audit not found")
    return AuditDetailResponse(audit=audit)


@router.get(
    "/{audit_id}/progress",
    summary="Stream live audit progress (server-sent events)",
)
async def stream_progress(audit_id: str, service: AuditServiceDep) -> StreamingResponse:
    if not await service.get_audit(audit_id):
        raise HTTPException(status_code=404, detail="Audit not found")

    return StreamingResponse(
        _progress_events(audit_id, service),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post(
    "/{audit_id}/cancel",
    response_model=CancelResponse,
    summary="Cancel a running audit",
)
async def cancel_audit(audit_id: str, service: AuditServiceDep) -> CancelResponse:
    audit = await service.get_audit(audit_id)
    if not audit:
        raise HTTPException(status_code=404, detail="Audit not found")

    if not service.cancel_audit(audit_id):
        raise HTTPException(status_code=409, detail=f"Audit is not running (status: {audit.status.value})")

    return CancelResponse(id=audit_id, cancelled=True)


# ─────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────

def _sse(progress: AuditProgress) -> str:
    return f"data: {progress.model_dump_json()}\n\n"


async def _final_snapshot(audit_id: str, service: AuditService) -> AuditProgress | None:
    """Terminal snapshot from the audit record, once its progress entry has expired."""
    audit = await service.get_audit(audit_id)
    if audit is None or audit.status not in (AuditStatus.COMPLETE, AuditStatus.FAILED):
        return None
    if audit.status == AuditStatus.FAILED:
        return AuditProgress(status=ProgressStatus.FAILED, error=audit.error)
    return AuditProgress(
        status=ProgressStatus.COMPLETE,
        pages_crawled=audit.pages_crawled,
        total_pages_found=audit.total_pages,
        percent_complete=100,
    )


async def _progress_events(audit_id: str, service: AuditService) -> AsyncIterator[str]:
    """Current snapshot immediately, then one every PROGRESS_POLL_INTERVAL until terminal."""
    progress = await service.get_progress(audit_id) or await _final_snapshot(audit_id, service)
    yield _sse(progress or AuditProgress(status=ProgressStatus.INITIALIZING))
    if progress and ProgressStatus(progress.status).is_terminal:
        return

    while True:
        await asyncio.sleep(PROGRESS_POLL_INTERVAL)
        progress = await service.get_progress(audit_id) or await _final_snapshot(audit_id, service)
        if progress is None:
            continue
        yield _sse(progress)
        if ProgressStatus(progress.status).is_terminal:
            logger.debug("Progress stream closed", audit_id=audit_id, status=progress.status)
            return
