"""Database models for the workflow execution engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.workflow import WorkflowDefinitionRecord
from db.models.execution import WorkflowExecutionRecord

__all__ = [
    "WorkflowDefinitionRecord",
    "WorkflowExecutionRecord",
]
