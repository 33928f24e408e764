"""Repository interfaces for definitions and executions.

The engine never holds a database handle: it talks to these interfaces.
Both in-memory implementations store the JSON document form and rebuild
objects on read, so callers always get a detached copy. SQL-backed
implementations live in ``db.repository``.
"""

from abc import ABC, abstractmethod
from typing import Optional

from workflow.models import WorkflowDefinition, WorkflowExecution


class DefinitionRepository(ABC):
    """Storage for workflow definitions."""

    @abstractmethod
    async def get(self, definition_id: str) -> Optional[WorkflowDefinition]:
        ...

    @abstractmethod
    async def save(self, definition: WorkflowDefinition) -> None:
        """Insert or replace a definition."""

    @abstractmethod
    async def delete(self, definition_id: str) -> bool:
        ...

    @abstractmethod
    async def list(self, tenant_id: Optional[str] = None) -> list[WorkflowDefinition]:
        ...


class ExecutionRepository(ABC):
    """Storage for workflow executions."""

    @abstractmethod
    async def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        ...

    @abstractmethod
    async def save(self, execution: WorkflowExecution) -> None:
        """Insert or replace an execution."""

    @abstractmethod
    async def list(
        self,
        workflow_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> list[WorkflowExecution]:
        ...


class InMemoryDefinitionRepository(DefinitionRepository):

    def __init__(self):
        self._documents: dict[str, dict] = {}

    async def get(self, definition_id: str) -> Optional[WorkflowDefinition]:
        document = self._documents.get(definition_id)
        return WorkflowDefinition.from_document(document) if document else None

    async def save(self, definition: WorkflowDefinition) -> None:
        self._documents[definition.id] = definition.to_document()

    async def delete(self, definition_id: str) -> bool:
        return self._documents.pop(definition_id, None) is not None

    async def list(self, tenant_id: Optional[str] = None) -> list[WorkflowDefinition]:
        return [
            WorkflowDefinition.from_document(doc)
            for doc in self._documents.values()
            if tenant_id is None or doc.get("tenant_id") == tenant_id
        ]


class InMemoryExecutionRepository(ExecutionRepository):

    def __init__(self):
        self._documents: dict[str, dict] = {}

    async def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        document = self._documents.get(execution_id)
        return WorkflowExecution.from_dict(document) if document else None

    async def save(self, execution: WorkflowExecution) -> None:
        self._documents[execution.id] = execution.to_dict()

    async def list(
        self,
        workflow_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> list[WorkflowExecution]:
        return [
            WorkflowExecution.from_dict(doc)
            for doc in self._documents.values()
            if (workflow_id is None or doc.get("workflow_id") == workflow_id)
            and (tenant_id is None or doc.get("tenant_id") == tenant_id)
        ]
