"""
Audit record storage.

Records are AuditResults models; the in-memory repository keeps them for the
lifetime of the process.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Protocol

import structlog

from seo_audit.engines.base import AuditResults, AuditStatus

logger = structlog.get_logger(__name__)


class AuditNotFoundError(KeyError):
    pass


class AuditRepository(Protocol):
    async def create(self, url: str) -> AuditResults: ...

    async def get(self, audit_id: str) -> AuditResults | None: ...

    async def update_status(self, audit_id: str, status: AuditStatus) -> AuditResults: ...

    async def complete(self, results: AuditResults) -> AuditResults: ...

    async def fail(self, audit_id: str, error: str) -> AuditResults: ...


class InMemoryAuditRepository:

    def __init__(self):
        self._audits: dict[str, AuditResults] = {}

    async def create(self, url: str) -> AuditResults:
        audit = AuditResults(
            id=str(uuid.uuid4()),
            url=url,
            status=AuditStatus.PENDING,
            created_at=datetime.now(timezone.utc),
        )
        self._audits[audit.id] = audit
        logger.info("Audit created", audit_id=audit.id, url=url)
        return audit

    async def get(self, audit_id: str) -> AuditResults | None:
        return self._audits.get(audit_id)

    def _require(self, audit_id: str) -> AuditResults:
        audit = self._audits.get(audit_id)
        if audit is None:
            raise AuditNotFoundError(audit_id)
        return audit

    async def update_status(self, audit_id: str, status: AuditStatus) -> AuditResults:
        audit = self._require(audit_id).model_copy(update={"status": status})
        self._audits[audit_id] = audit
        return audit

    async def complete(self, results: AuditResults) -> AuditResults:
        existing = self._require(results.id)
        audit = results.model_copy(update={
            "status": AuditStatus.COMPLETE,
            "created_at": existing.created_at,
            "completed_at": results.completed_at or datetime.now(timezone.utc),
        })
        self._audits[audit.id] = audit
        return audit

    async def fail(self, audit_id: str, error: str) -> AuditResults:
        audit = self._require(audit_id).model_copy(update={
            "status": AuditStatus.FAILED,
            "completed_at": datetime.now(timezone.utc),
            "error": error,
        })
        self._audits[audit_id] = audit
        return audit
