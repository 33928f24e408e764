"""Execution store.

Live (non-terminal) executions are held in memory and owned by the
processor; everything else goes through the ExecutionRepository. Readers
outside the processor always receive detached copies.
"""

from typing import Optional

import structlog

from workflow.models import WorkflowExecution
from workflow.repository import ExecutionRepository, InMemoryExecutionRepository

logger = structlog.get_logger(__name__)


class ExecutionStore:

    def __init__(self, repository: Optional[ExecutionRepository] = None):
        self.repository = repository or InMemoryExecutionRepository()
        self._active: dict[str, WorkflowExecution] = {}

    async def create(self, execution: WorkflowExecution) -> None:
        self._active[execution.id] = execution
        await self.repository.save(execution)

    def get_active(self, execution_id: str) -> Optional[WorkflowExecution]:
        """The live record. Only the processor may mutate it."""
        return self._active.get(execution_id)

    def active(self) -> list[WorkflowExecution]:
        return [execution.copy() for execution in self._active.values()]

    async def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        """Copy of the execution, live or persisted."""
        live = self._active.get(execution_id)
        if live is not None:
            return live.copy()
        return await self.repository.get(execution_id)

    async def save(self, execution: WorkflowExecution) -> None:
        await self.repository.save(execution)

    async def release(self, execution: WorkflowExecution) -> None:
        """Persist a terminal execution and drop it from active tracking."""
        await self.repository.save(execution)
        self._active.pop(execution.id, None)
        logger.debug("Execution released", execution_id=execution.id, status=execution.status.value)

    async def list(
        self,
        workflow_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> list[WorkflowExecution]:
        """All matching executions; live records take precedence over persisted ones."""
        results = {
            execution.id: execution
            for execution in await self.repository.list(workflow_id=workflow_id, tenant_id=tenant_id)
        }
        for execution in self._active.values():
            if (workflow_id is None or execution.workflow_id == workflow_id) and (
                tenant_id is None or execution.tenant_id == tenant_id
            ):
                results[execution.id] = execution.copy()
        return sorted(results.values(), key=lambda e: e.started_at)

    async def has_unfinished(self, workflow_id: str) -> bool:
        if any(e.workflow_id == workflow_id for e in self._active.values()):
            return True
        return any(not e.is_terminal for e in await self.repository.list(workflow_id=workflow_id))
