"""Workflow execution table."""

from datetime import datetime

from sqlalchemy import JSON, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import ExecutionStatus
from db.base import BaseModel


class WorkflowExecutionRecord(BaseModel):
    """Stored workflow execution.

    Attributes:
        id: Execution id
        workflow_id: Definition the execution runs
        tenant_id: Tenant the execution belongs to
        status: Current execution status
        started_at: When the execution started
        document: Full JSON document (steps, logs, variables, snapshot, ...)
    """

    __tablename__ = "workflow_executions"

    workflow_id: Mapped[str] = mapped_column(nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        default=ExecutionStatus.PENDING.value, index=True
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    document: Mapped[dict] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<WorkflowExecutionRecord(id={self.id}, status={self.status})>"
