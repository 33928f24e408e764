"""Audit sink collaborators.

Security-relevant events (definition create/update/delete, execution
start and state transitions) are reported through an ``AuditSink``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import structlog

from core.utils import utc_now

logger = structlog.get_logger(__name__)


@dataclass
class AuditRecord:
    """One audit event."""
    tenant_id: str
    actor_id: Optional[str]
    action: str
    resource: str
    details: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "actor_id": self.actor_id,
            "action": self.action,
            "resource": self.resource,
            "details": self.details,
            "created_at": self.created_at.isoformat(),
        }


class AuditSink(ABC):
    """Receives audit events. Implementations must not raise."""

    @abstractmethod
    async def log(
        self,
        tenant_id: str,
        actor_id: Optional[str],
        action: str,
        resource: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        ...


class StructlogAuditSink(AuditSink):
    """Writes audit events to the structured application log."""

    async def log(
        self,
        tenant_id: str,
        actor_id: Optional[str],
        action: str,
        resource: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        record = AuditRecord(tenant_id, actor_id, action, resource, details or {})
        logger.info("audit", **record.to_dict())
