"""
Report API Routes

The report itself (charts, PDF) is rendered client-side from the completed
audit results returned here.
"""

from fastapi import APIRouter, HTTPException

from seo_audit.api.v1.routes.audits import AuditDetailResponse, AuditServiceDep
from seo_audit.engines.base import AuditStatus

router = APIRouter()


@router.get(
    "/{audit_id}",
    response_model=AuditDetailResponse,
    summary="Get completed audit results for report rendering",
)
async def get_report(audit_id: str, service: AuditServiceDep) -> AuditDetailResponse:
    audit = await service.get_audit(audit_id)
    if not audit:
        raise HTTPException(status_code=404, detail="Audit not found")

    if audit.status != AuditStatus.COMPLETE:
        raise HTTPException(status_code=400, detail="Audit is not complete")

    return AuditDetailResponse(audit=audit)
