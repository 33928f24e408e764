"""Workflow service: definition CRUD, execution control and analytics.

The one surface callers talk to. Builds the registry, execution store,
step handlers, engine and analytics from injected collaborators, and
enforces the access check on definition management.
"""

import logging
from typing import Any, Optional, Union

from pydantic import BaseModel

from app.config import Settings, get_settings
from core.audit import AuditSink, StructlogAuditSink
from core.exceptions import NotFoundError, PermissionDenied
from core.rbac import AccessChecker
from integrations.side_effects import SideEffects
from integrations.simulated import simulated_side_effects
from tasks.registry import StepHandlerRegistry
from workflow.analytics import WorkflowAnalytics
from workflow.engine import WorkflowEngine
from workflow.models import WorkflowDefinition, WorkflowExecution, WorkflowExecutionContext
from workflow.registry import DefinitionRegistry
from workflow.repository import DefinitionRepository, ExecutionRepository
from workflow.store import ExecutionStore
from workflow.templates import SYSTEM_TENANT, install_builtin_templates

logger = logging.getLogger(__name__)


class WorkflowService:
    """Facade over the workflow engine.

    Usage:
        service = WorkflowService(access_checker)
        definition = await service.create_definition(document, context)
        execution = await service.start_execution(definition.id, {"name": "Ada"}, context)
        await service.run_until_idle()
    """

    def __init__(
        self,
        access_checker: AccessChecker,
        side_effects: Optional[SideEffects] = None,
        audit_sink: Optional[AuditSink] = None,
        definition_repository: Optional[DefinitionRepository] = None,
        execution_repository: Optional[ExecutionRepository] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.access_checker = access_checker
        self.audit_sink = audit_sink or StructlogAuditSink()

        self.store = ExecutionStore(execution_repository)
        self.registry = DefinitionRegistry(
            repository=definition_repository,
            audit_sink=self.audit_sink,
            executions=self.store,
        )
        self.handlers = StepHandlerRegistry(side_effects or simulated_side_effects())
        self.engine = WorkflowEngine(
            definitions=self.registry,
            handlers=self.handlers,
            access_checker=access_checker,
            store=self.store,
            audit_sink=self.audit_sink,
            settings=self.settings,
        )
        self.analytics = WorkflowAnalytics(self.store)

    # ─── Definitions ───────────────────────────────────────────

    async def create_definition(
        self,
        definition: Union[WorkflowDefinition, dict[str, Any]],
        context: WorkflowExecutionContext,
    ) -> WorkflowDefinition:
        """Validate and register a definition owned by the caller's tenant."""
        await self._require(context, "create")
        if isinstance(definition, dict):
            definition = {**definition, "tenant_id": context.tenant_id}
            definition.setdefault("created_by", context.user_id)
        else:
            definition = definition.model_copy(update={"tenant_id": context.tenant_id})
        created = await self.registry.register(definition, actor_id=context.user_id)
        logger.info(f"Workflow {created.id} created by {context.user_id}")
        return created

    async def get_definition(self, definition_id: str, context: WorkflowExecutionContext) -> WorkflowDefinition:
        await self._require(context, "read")
        definition = await self.registry.get(definition_id)
        if definition is None or not self._visible(definition, context):
            raise NotFoundError(f"Workflow definition '{definition_id}' not found")
        return definition

    async def update_definition(
        self,
        definition_id: str,
        patch: Union[dict[str, Any], BaseModel],
        context: WorkflowExecutionContext,
    ) -> WorkflowDefinition:
        await self._require(context, "update")
        await self._owned(definition_id, context)
        return await self.registry.update(definition_id, patch, actor_id=context.user_id)

    async def delete_definition(self, definition_id: str, context: WorkflowExecutionContext) -> bool:
        await self._require(context, "delete")
        definition = await self.registry.get(definition_id)
        if definition is None or definition.tenant_id != context.tenant_id:
            return False
        return await self.registry.delete(definition_id, actor_id=context.user_id)

    async def list_definitions(
        self,
        context: WorkflowExecutionContext,
        include_public: bool = True,
    ) -> list[WorkflowDefinition]:
        await self._require(context, "read")
        return await self.registry.list(context.tenant_id, include_public=include_public)

    async def install_builtin_templates(self, tenant_id: str = SYSTEM_TENANT) -> list[WorkflowDefinition]:
        return await install_builtin_templates(self.registry, tenant_id)

    # ─── Executions ────────────────────────────────────────────

    async def start_execution(
        self,
        definition_id: str,
        input: Optional[dict[str, Any]],
        context: WorkflowExecutionContext,
    ) -> WorkflowExecution:
        return await self.engine.start_execution(definition_id, input, context)

    async def get_execution(self, execution_id: str, context: WorkflowExecutionContext) -> WorkflowExecution:
        await self._require(context, "read")
        execution = await self.engine.get_execution(execution_id)
        if execution.tenant_id != context.tenant_id:
            raise NotFoundError(f"Execution '{execution_id}' not found")
        return execution

    async def list_executions(
        self,
        context: WorkflowExecutionContext,
        workflow_id: Optional[str] = None,
    ) -> list[WorkflowExecution]:
        await self._require(context, "read")
        return await self.engine.list_executions(workflow_id=workflow_id, tenant_id=context.tenant_id)

    async def pause_execution(self, execution_id: str, context: WorkflowExecutionContext) -> WorkflowExecution:
        await self._execution_in_tenant(execution_id, context)
        return await self.engine.pause_execution(execution_id, context.user_id)

    async def resume_execution(self, execution_id: str, context: WorkflowExecutionContext) -> WorkflowExecution:
        await self._execution_in_tenant(execution_id, context)
        return await self.engine.resume_execution(execution_id, context.user_id)

    async def cancel_execution(self, execution_id: str, context: WorkflowExecutionContext) -> WorkflowExecution:
        await self._execution_in_tenant(execution_id, context)
        return await self.engine.cancel_execution(execution_id, context.user_id)

    async def approve_step(
        self,
        execution_id: str,
        step_id: str,
        context: WorkflowExecutionContext,
        comments: Optional[str] = None,
    ) -> WorkflowExecution:
        await self._execution_in_tenant(execution_id, context)
        return await self.engine.approve_step(execution_id, step_id, context.user_id, comments)

    async def reject_step(
        self,
        execution_id: str,
        step_id: str,
        context: WorkflowExecutionContext,
        comments: Optional[str] = None,
    ) -> WorkflowExecution:
        await self._execution_in_tenant(execution_id, context)
        return await self.engine.reject_step(execution_id, step_id, context.user_id, comments)

    # ─── Analytics ─────────────────────────────────────────────

    async def get_analytics(
        self,
        workflow_id: str,
        context: WorkflowExecutionContext,
        period: str = "monthly",
    ) -> dict[str, Any]:
        await self._require(context, "read")
        return await self.analytics.get_analytics(workflow_id, context.tenant_id, period)

    # ─── Lifecycle ─────────────────────────────────────────────

    async def run_until_idle(self, timeout: Optional[float] = None) -> None:
        await self.engine.run_until_idle(timeout)

    async def shutdown(self) -> None:
        await self.engine.stop_processor()

    # ─── Helpers ───────────────────────────────────────────────

    async def _require(self, context: WorkflowExecutionContext, action: str) -> None:
        allowed = await self.access_checker.can_execute(context.tenant_id, context.user_id, "workflows", action)
        if not allowed:
            raise PermissionDenied(f"Not allowed to {action} workflows")

    @staticmethod
    def _visible(definition: WorkflowDefinition, context: WorkflowExecutionContext) -> bool:
        return definition.tenant_id == context.tenant_id or definition.is_public

    async def _owned(self, definition_id: str, context: WorkflowExecutionContext) -> WorkflowDefinition:
        definition = await self.registry.get(definition_id)
        if definition is None or definition.tenant_id != context.tenant_id:
            raise NotFoundError(f"Workflow definition '{definition_id}' not found")
        return definition

    async def _execution_in_tenant(self, execution_id: str, context: WorkflowExecutionContext) -> None:
        execution = await self.store.get(execution_id)
        if execution is None or execution.tenant_id != context.tenant_id:
            raise NotFoundError(f"Execution '{execution_id}' not found")
