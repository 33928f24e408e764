"""Workflow data model.

Definition-side types (``WorkflowDefinition`` and everything nested in it)
are pydantic models: they arrive from callers and must be validated, and
``model_dump(mode="json")`` gives the schema-less document form used by the
repositories.

Runtime types (``WorkflowExecution`` and friends) are plain dataclasses
owned by the processor, with ``to_dict()`` / ``from_dict()`` for
persistence and copy-on-read.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from core.constants import (
    ExecutionStatus,
    LogLevel,
    StepStatus,
    WorkflowCategory,
)
from core.utils import isoformat, new_id, parse_datetime, utc_now


# ─── Definition types ─────────────────────────────────────────

class RetryConfig(BaseModel):
    """Retry policy for a single step or action."""

    max_attempts: int = Field(default=0, ge=0, description="Retries after the first attempt")
    delay: float = Field(default=0.0, ge=0, description="Initial delay in seconds")
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=300.0, ge=0)


class WorkflowCondition(BaseModel):
    """A gating predicate evaluated against execution variables."""

    id: str = Field(default_factory=lambda: new_id("cond"))
    name: str = ""
    type: str = "if"  # if, else, elseif, switch
    operator: str = Field(description="Comparison operator, see ConditionOperator")
    field: str = Field(default="", description="Dot path into execution variables")
    value: Any = None
    logical_operator: Optional[str] = Field(default=None, description="'and' (default) or 'or'")
    conditions: list["WorkflowCondition"] = Field(default_factory=list)


WorkflowCondition.model_rebuild()


class WorkflowAction(BaseModel):
    """A side-effecting instruction run after a step outcome."""

    id: str = Field(default_factory=lambda: new_id("action"))
    name: str = ""
    type: str = Field(description="Action type, see ActionType")
    config: dict[str, Any] = Field(default_factory=dict)
    order: int = 0
    is_async: bool = False
    retry_config: Optional[RetryConfig] = None


class WorkflowStep(BaseModel):
    """One node of a workflow definition."""

    id: str = Field(min_length=1)
    name: str = ""
    description: str = ""
    type: str = Field(min_length=1, description="Step type tag, see StepType")
    order: int
    is_required: bool = True
    is_parallel: bool = False
    timeout: Optional[float] = Field(default=None, gt=0, description="Step timeout in seconds")
    config: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)
    conditions: list[WorkflowCondition] = Field(default_factory=list)
    on_success: list[WorkflowAction] = Field(default_factory=list)
    on_failure: list[WorkflowAction] = Field(default_factory=list)
    on_timeout: list[WorkflowAction] = Field(default_factory=list)
    retry: Optional[RetryConfig] = None


class WorkflowTrigger(BaseModel):
    """Recorded on the definition; triggers are not executed by the engine."""

    id: str = Field(default_factory=lambda: new_id("trigger"))
    name: str = ""
    type: str = "manual"
    is_active: bool = True
    config: dict[str, Any] = Field(default_factory=dict)
    conditions: list[WorkflowCondition] = Field(default_factory=list)


class WorkflowExecutionSettings(BaseModel):
    """Execution-wide settings."""

    max_duration: Optional[float] = Field(default=None, ge=0, description="Seconds; None or 0 disables")
    allow_parallel: bool = False
    allow_retry: bool = True
    max_retries: int = Field(default=0, ge=0)
    retry_delay: float = Field(default=0.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    notify_on_start: bool = False
    notify_on_complete: bool = False
    notify_on_error: bool = False
    notify_recipients: list[str] = Field(default_factory=list)
    continue_on_error: bool = False
    rollback_on_error: bool = False
    timeout: Optional[float] = Field(default=None, gt=0, description="Default step timeout in seconds")
    concurrency_limit: int = Field(default=1, ge=1)
    require_approval: bool = False
    audit_logging: bool = True


class WorkflowMetadata(BaseModel):
    priority: str = "medium"  # low, medium, high, critical
    expected_duration: float = 0  # minutes
    complexity: str = "simple"
    business_unit: Optional[str] = None
    department: Optional[str] = None
    project: Optional[str] = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class WorkflowDefinition(BaseModel):
    """Reusable workflow template. Never mutated by a running execution."""

    id: str = Field(default_factory=lambda: new_id("workflow"))
    name: str = ""
    description: str = ""
    version: str = "1.0.0"
    revision: int = 1
    category: str = WorkflowCategory.CUSTOM.value
    tags: list[str] = Field(default_factory=list)
    tenant_id: str = Field(min_length=1)
    is_active: bool = True
    is_public: bool = False
    is_system: bool = False
    steps: list[WorkflowStep] = Field(default_factory=list)
    triggers: list[WorkflowTrigger] = Field(default_factory=list)
    execution_settings: WorkflowExecutionSettings = Field(default_factory=WorkflowExecutionSettings)
    metadata: WorkflowMetadata = Field(default_factory=WorkflowMetadata)
    created_by: str = "system"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_executed_at: Optional[datetime] = None
    execution_count: int = 0

    def step(self, step_id: str) -> Optional[WorkflowStep]:
        return next((s for s in self.steps if s.id == step_id), None)

    def ordered_steps(self) -> list[WorkflowStep]:
        return sorted(self.steps, key=lambda s: s.order)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=False)

    @classmethod
    def from_document(cls, data: dict) -> "WorkflowDefinition":
        return cls.model_validate(data)


# ─── Runtime types ────────────────────────────────────────────

@dataclass
class WorkflowExecutionContext:
    """Who started an execution, and from where."""
    tenant_id: str
    user_id: str
    user_role: str = ""
    session_id: str = ""
    ip_address: str = ""
    user_agent: str = ""
    request_id: str = ""
    environment: str = "production"

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "user_role": self.user_role,
            "session_id": self.session_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "request_id": self.request_id,
            "environment": self.environment,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowExecutionContext":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})


@dataclass
class WorkflowExecutionLog:
    """Append-only log entry attached to one execution."""
    level: str
    message: str
    step_id: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: new_id("log"))
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "message": self.message,
            "step_id": self.step_id,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowExecutionLog":
        return cls(
            id=data["id"],
            timestamp=parse_datetime(data["timestamp"]),
            level=data.get("level", LogLevel.INFO.value),
            message=data.get("message", ""),
            step_id=data.get("step_id"),
            data=data.get("data") or {},
        )


@dataclass
class WorkflowStepExecution:
    """Per-step runtime record."""
    step_id: str
    max_retries: int = 0
    id: str = field(default_factory=lambda: new_id("step_exec"))
    status: StepStatus = StepStatus.PENDING
    input: dict[str, Any] = field(default_factory=dict)
    output: dict[str, Any] = field(default_factory=dict)
    retry_count: int = 0
    attempts: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration: Optional[float] = None  # seconds
    error: Optional[str] = None
    timed_out: bool = False
    next_attempt_at: Optional[datetime] = None
    assignee: Optional[str] = None
    comments: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "step_id": self.step_id,
            "status": self.status.value,
            "input": self.input,
            "output": self.output,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "attempts": self.attempts,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "duration": self.duration,
            "error": self.error,
            "timed_out": self.timed_out,
            "next_attempt_at": isoformat(self.next_attempt_at),
            "assignee": self.assignee,
            "comments": self.comments,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowStepExecution":
        return cls(
            id=data["id"],
            step_id=data["step_id"],
            status=StepStatus(data.get("status", StepStatus.PENDING.value)),
            input=data.get("input") or {},
            output=data.get("output") or {},
            retry_count=data.get("retry_count", 0),
            max_retries=data.get("max_retries", 0),
            attempts=data.get("attempts", 0),
            started_at=parse_datetime(data.get("started_at")),
            completed_at=parse_datetime(data.get("completed_at")),
            duration=data.get("duration"),
            error=data.get("error"),
            timed_out=data.get("timed_out", False),
            next_attempt_at=parse_datetime(data.get("next_attempt_at")),
            assignee=data.get("assignee"),
            comments=data.get("comments"),
        )


@dataclass
class WorkflowExecution:
    """One run of a workflow definition.

    ``definition_snapshot`` holds the steps and execution settings as they
    were when the execution started; later definition edits do not reach
    an in-flight execution.
    """
    workflow_id: str
    tenant_id: str
    context: WorkflowExecutionContext
    definition_snapshot: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: new_id("execution"))
    status: ExecutionStatus = ExecutionStatus.PENDING
    current_step: Optional[str] = None
    progress: int = 0
    input: dict[str, Any] = field(default_factory=dict)
    output: dict[str, Any] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)
    steps: list[WorkflowStepExecution] = field(default_factory=list)
    logs: list[WorkflowExecutionLog] = field(default_factory=list)
    started_by: str = ""
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    duration: Optional[float] = None  # seconds
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def step(self, step_id: str) -> Optional[WorkflowStepExecution]:
        return next((s for s in self.steps if s.step_id == step_id), None)

    def snapshot_steps(self) -> list[WorkflowStep]:
        """Rebuild the step definitions captured at start, ordered."""
        steps = [WorkflowStep.model_validate(s) for s in self.definition_snapshot.get("steps", [])]
        return sorted(steps, key=lambda s: s.order)

    def snapshot_settings(self) -> WorkflowExecutionSettings:
        return WorkflowExecutionSettings.model_validate(
            self.definition_snapshot.get("execution_settings", {})
        )

    def to_dict(self) -> dict:
        """Serialize to the document form used by repositories."""
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "tenant_id": self.tenant_id,
            "status": self.status.value,
            "current_step": self.current_step,
            "progress": self.progress,
            "input": self.input,
            "output": self.output,
            "variables": self.variables,
            "steps": [s.to_dict() for s in self.steps],
            "logs": [entry.to_dict() for entry in self.logs],
            "started_by": self.started_by,
            "started_at": self.started_at.isoformat(),
            "completed_at": isoformat(self.completed_at),
            "duration": self.duration,
            "error": self.error,
            "context": self.context.to_dict(),
            "definition_snapshot": self.definition_snapshot,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowExecution":
        """Restore an execution from its document form."""
        return cls(
            id=data["id"],
            workflow_id=data["workflow_id"],
            tenant_id=data["tenant_id"],
            status=ExecutionStatus(data.get("status", ExecutionStatus.PENDING.value)),
            current_step=data.get("current_step"),
            progress=data.get("progress", 0),
            input=data.get("input") or {},
            output=data.get("output") or {},
            variables=data.get("variables") or {},
            steps=[WorkflowStepExecution.from_dict(s) for s in data.get("steps", [])],
            logs=[WorkflowExecutionLog.from_dict(entry) for entry in data.get("logs", [])],
            started_by=data.get("started_by", ""),
            started_at=parse_datetime(data["started_at"]),
            completed_at=parse_datetime(data.get("completed_at")),
            duration=data.get("duration"),
            error=data.get("error"),
            context=WorkflowExecutionContext.from_dict(data.get("context") or {}),
            definition_snapshot=data.get("definition_snapshot") or {},
        )

    def copy(self) -> "WorkflowExecution":
        """Detached deep copy for external readers."""
        return WorkflowExecution.from_dict(self.to_dict())
