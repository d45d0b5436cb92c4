"""
Live audit progress, keyed by audit id.

Lifecycle of one entry:
- Inserted when the audit starts (status "initializing")
- Overwritten by every crawler/orchestrator snapshot
- Frozen once it reaches "complete" or "failed": later writes are rejected
- Expired PROGRESS_GRACE_SECONDS after reaching that terminal state

Two backends: an in-process dict (single worker) and Redis (shared).
"""

from __future__ import annotations

import time
from typing import Callable, Protocol

import structlog

from seo_audit.core.config import get_settings
from seo_audit.core.redis import CacheManager, get_redis_client
from seo_audit.engines.base import AuditProgress, ProgressStatus

logger = structlog.get_logger(__name__)


class ProgressStore(Protocol):
    async def set(self, audit_id: str, progress: AuditProgress) -> bool:
        """Store a snapshot. Returns False when the entry is already terminal."""
        ...

    async def get(self, audit_id: str) -> AuditProgress | None: ...

    async def delete(self, audit_id: str) -> None: ...


def _is_terminal(progress: AuditProgress) -> bool:
    return ProgressStatus(progress.status).is_terminal


class InMemoryProgressStore:

    def __init__(self, grace_seconds: int | None = None, clock: Callable[[], float] = time.monotonic):
        self.grace_seconds = grace_seconds if grace_seconds is not None else get_settings().PROGRESS_GRACE_SECONDS
        self._clock = clock
        self._entries: dict[str, tuple[AuditProgress, float | None]] = {}

    async def set(self, audit_id: str, progress: AuditProgress) -> bool:
        current = await self.get(audit_id)
        if current is not None and _is_terminal(current):
            logger.debug("Progress update after terminal state ignored", audit_id=audit_id, status=progress.status)
            return False

        expires_at = self._clock() + self.grace_seconds if _is_terminal(progress) else None
        self._entries[audit_id] = (progress, expires_at)
        return True

    async def get(self, audit_id: str) -> AuditProgress | None:
        entry = self._entries.get(audit_id)
        if entry is None:
            return None
        progress, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[audit_id]
            return None
        return progress

    async def delete(self, audit_id: str) -> None:
        self._entries.pop(audit_id, None)


class RedisProgressStore:
    """JSON snapshots in Redis. Terminal snapshots are written with a TTL."""

    def __init__(self, cache: CacheManager, grace_seconds: int | None = None):
        self.cache = cache
        self.grace_seconds = grace_seconds if grace_seconds is not None else get_settings().PROGRESS_GRACE_SECONDS

    @staticmethod
    def _key(audit_id: str) -> str:
        return f"progress:{audit_id}"

    async def set(self, audit_id: str, progress: AuditProgress) -> bool:
        current = await self.get(audit_id)
        if current is not None and _is_terminal(current):
            logger.debug("Progress update after terminal state ignored", audit_id=audit_id, status=progress.status)
            return False

        ttl = self.grace_seconds if _is_terminal(progress) else None
        await self.cache.set(self._key(audit_id), progress.model_dump_json(), ttl=ttl)
        return True

    async def get(self, audit_id: str) -> AuditProgress | None:
        raw = await self.cache.get(self._key(audit_id))
        if raw is None:
            return None
        return AuditProgress.model_validate_json(raw)

    async def delete(self, audit_id: str) -> None:
        await self.cache.delete(self._key(audit_id))


def get_progress_store() -> ProgressStore:
    settings = get_settings()
    if settings.PROGRESS_BACKEND == "redis":
        return RedisProgressStore(CacheManager(get_redis_client()))
    return InMemoryProgressStore(settings.PROGRESS_GRACE_SECONDS)
