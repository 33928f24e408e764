"""SQLAlchemy-backed repositories.

Definitions and executions are stored as JSON documents alongside a few
indexed columns used for filtering. Each operation runs in its own
session from the injected factory.
"""

from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from db.models import WorkflowDefinitionRecord, WorkflowExecutionRecord
from workflow.models import WorkflowDefinition, WorkflowExecution
from workflow.repository import DefinitionRepository, ExecutionRepository


class SqlDefinitionRepository(DefinitionRepository):

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get(self, definition_id: str) -> Optional[WorkflowDefinition]:
        async with self.session_factory() as session:
            record = await session.get(WorkflowDefinitionRecord, definition_id)
            return WorkflowDefinition.from_document(record.document) if record else None

    async def save(self, definition: WorkflowDefinition) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                record = await session.get(WorkflowDefinitionRecord, definition.id)
                if record is None:
                    record = WorkflowDefinitionRecord(id=definition.id)
                    session.add(record)
                record.tenant_id = definition.tenant_id
                record.name = definition.name
                record.revision = definition.revision
                record.is_active = definition.is_active
                record.is_system = definition.is_system
                record.document = definition.to_document()

    async def delete(self, definition_id: str) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(WorkflowDefinitionRecord).where(WorkflowDefinitionRecord.id == definition_id)
                )
        return result.rowcount > 0

    async def list(self, tenant_id: Optional[str] = None) -> list[WorkflowDefinition]:
        query = select(WorkflowDefinitionRecord).order_by(WorkflowDefinitionRecord.created_at)
        if tenant_id is not None:
            query = query.where(WorkflowDefinitionRecord.tenant_id == tenant_id)
        async with self.session_factory() as session:
            records = (await session.execute(query)).scalars().all()
        return [WorkflowDefinition.from_document(r.document) for r in records]


class SqlExecutionRepository(ExecutionRepository):

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        async with self.session_factory() as session:
            record = await session.get(WorkflowExecutionRecord, execution_id)
            return WorkflowExecution.from_dict(record.document) if record else None

    async def save(self, execution: WorkflowExecution) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                record = await session.get(WorkflowExecutionRecord, execution.id)
                if record is None:
                    record = WorkflowExecutionRecord(id=execution.id)
                    session.add(record)
                record.workflow_id = execution.workflow_id
                record.tenant_id = execution.tenant_id
                record.status = execution.status.value
                record.started_at = execution.started_at
                record.document = execution.to_dict()

    async def list(
        self,
        workflow_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> list[WorkflowExecution]:
        query = select(WorkflowExecutionRecord).order_by(WorkflowExecutionRecord.started_at)
        if workflow_id is not None:
            query = query.where(WorkflowExecutionRecord.workflow_id == workflow_id)
        if tenant_id is not None:
            query = query.where(WorkflowExecutionRecord.tenant_id == tenant_id)
        async with self.session_factory() as session:
            records = (await session.execute(query)).scalars().all()
        return [WorkflowExecution.from_dict(r.document) for r in records]
