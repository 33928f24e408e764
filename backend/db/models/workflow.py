"""Workflow definition table."""

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class WorkflowDefinitionRecord(BaseModel):
    """Stored workflow definition.

    Attributes:
        id: Definition id
        tenant_id: Owning tenant
        name: Definition name (copied from the document for listing)
        revision: Revision counter, bumped on every update
        is_active: Whether the definition can be executed
        is_system: Built-in definition that cannot be deleted
        document: Full JSON document of the definition (steps, settings, ...)
    """

    __tablename__ = "workflow_definitions"

    tenant_id: Mapped[str] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(nullable=False, default="")
    revision: Mapped[int] = mapped_column(default=1)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    is_system: Mapped[bool] = mapped_column(default=False)
    document: Mapped[dict] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<WorkflowDefinitionRecord(id={self.id}, name={self.name}, revision={self.revision})>"
