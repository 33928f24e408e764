"""Definition registry.

Stores validated workflow definitions behind a DefinitionRepository.
Every register/update runs the DefinitionValidator first; an invalid
definition is never written, and an update either replaces the stored
definition with a fully validated one or leaves it untouched.
"""

from typing import Any, Optional, Union

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from core.audit import AuditSink
from core.constants import AuditAction
from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.utils import utc_now
from workflow.models import WorkflowDefinition
from workflow.repository import DefinitionRepository, InMemoryDefinitionRepository
from workflow.store import ExecutionStore
from workflow.validator import DefinitionValidator

logger = structlog.get_logger(__name__)

# Fields an update patch can never change.
IMMUTABLE_FIELDS = ("id", "tenant_id", "created_at", "created_by", "execution_count", "last_executed_at")


def _parse(data: dict) -> WorkflowDefinition:
    try:
        return WorkflowDefinition.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"Invalid workflow definition: {location}: {first.get('msg', str(e))}")


class DefinitionRegistry:

    def __init__(
        self,
        repository: Optional[DefinitionRepository] = None,
        validator: Optional[DefinitionValidator] = None,
        audit_sink: Optional[AuditSink] = None,
        executions: Optional[ExecutionStore] = None,
    ):
        self.repository = repository or InMemoryDefinitionRepository()
        self.validator = validator or DefinitionValidator()
        self.audit_sink = audit_sink
        self.executions = executions

    async def register(
        self,
        definition: Union[WorkflowDefinition, dict],
        actor_id: Optional[str] = None,
    ) -> WorkflowDefinition:
        """Validate and store a new definition.

        Raises:
            ValidationError: the definition is malformed
            ConflictError: a definition with the same id exists
        """
        if isinstance(definition, dict):
            definition = _parse(definition)
        else:
            definition = definition.model_copy(deep=True)

        self.validator.validate(definition)

        if await self.repository.get(definition.id) is not None:
            raise ConflictError(f"Workflow definition '{definition.id}' already exists")

        await self.repository.save(definition)
        logger.info(
            "Workflow definition registered",
            workflow_id=definition.id,
            tenant_id=definition.tenant_id,
            steps=len(definition.steps),
        )
        await self._audit(definition, actor_id or definition.created_by, AuditAction.WORKFLOW_CREATED, {
            "name": definition.name,
            "version": definition.version,
        })
        return definition.model_copy(deep=True)

    async def get(self, definition_id: str) -> Optional[WorkflowDefinition]:
        return await self.repository.get(definition_id)

    async def list(self, tenant_id: Optional[str] = None, include_public: bool = False) -> list[WorkflowDefinition]:
        """Definitions owned by ``tenant_id`` (all when None), optionally with public ones."""
        if tenant_id is None:
            return await self.repository.list()
        owned = await self.repository.list(tenant_id)
        if not include_public:
            return owned
        public = [d for d in await self.repository.list() if d.is_public and d.tenant_id != tenant_id]
        return owned + public

    async def update(
        self,
        definition_id: str,
        patch: Union[dict[str, Any], BaseModel],
        actor_id: Optional[str] = None,
    ) -> WorkflowDefinition:
        """Apply ``patch`` on top of the stored definition (validate-then-swap).

        Top-level keys of the patch replace the stored values; nested
        structures such as ``steps`` are replaced wholesale. ``revision`` is
        bumped on every successful update.
        """
        current = await self.repository.get(definition_id)
        if current is None:
            raise NotFoundError(f"Workflow definition '{definition_id}' not found")

        if isinstance(patch, BaseModel):
            patch = patch.model_dump(mode="json", exclude_unset=True)

        document = current.to_document()
        changed = sorted(key for key in patch if key not in IMMUTABLE_FIELDS)
        for key in changed:
            document[key] = patch[key]
        document["revision"] = current.revision + 1
        document["updated_at"] = utc_now().isoformat()

        candidate = _parse(document)
        self.validator.validate(candidate)

        await self.repository.save(candidate)
        logger.info("Workflow definition updated", workflow_id=definition_id, revision=candidate.revision)
        await self._audit(candidate, actor_id, AuditAction.WORKFLOW_UPDATED, {
            "fields": changed,
            "revision": candidate.revision,
        })
        return candidate

    async def delete(self, definition_id: str, actor_id: Optional[str] = None) -> bool:
        """Delete a definition. Returns False when it does not exist.

        Raises:
            ConflictError: system definition, or an execution of it is not terminal
        """
        definition = await self.repository.get(definition_id)
        if definition is None:
            return False

        if definition.is_system:
            raise ConflictError("System workflows cannot be deleted")

        if self.executions is not None and await self.executions.has_unfinished(definition_id):
            raise ConflictError(
                f"Workflow definition '{definition_id}' has executions that have not finished"
            )

        deleted = await self.repository.delete(definition_id)
        if deleted:
            logger.info("Workflow definition deleted", workflow_id=definition_id)
            await self._audit(definition, actor_id, AuditAction.WORKFLOW_DELETED, {"name": definition.name})
        return deleted

    async def record_execution(self, definition_id: str) -> None:
        """Bump the execution counter and last-executed timestamp."""
        definition = await self.repository.get(definition_id)
        if definition is None:
            return
        definition.execution_count += 1
        definition.last_executed_at = utc_now()
        await self.repository.save(definition)

    async def _audit(
        self,
        definition: WorkflowDefinition,
        actor_id: Optional[str],
        action: AuditAction,
        details: dict,
    ) -> None:
        if self.audit_sink is None or not definition.execution_settings.audit_logging:
            return
        await self.audit_sink.log(
            definition.tenant_id,
            actor_id,
            action.value,
            f"workflow:{definition.id}",
            details,
        )
