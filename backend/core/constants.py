"""Constants and enums for the workflow execution engine."""

from enum import Enum


class ExecutionStatus(str, Enum):
    """Workflow execution status."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_EXECUTION_STATUSES


TERMINAL_EXECUTION_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.CANCELLED,
    ExecutionStatus.TIMED_OUT,
})


class StepStatus(str, Enum):
    """Status of a single step inside an execution."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"
    WAITING_FOR_APPROVAL = "waiting_for_approval"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STEP_STATUSES


TERMINAL_STEP_STATUSES = frozenset({
    StepStatus.COMPLETED,
    StepStatus.FAILED,
    StepStatus.SKIPPED,
    StepStatus.CANCELLED,
})


class StepType(str, Enum):
    """Step type tags understood by the step handler registry."""

    TASK = "task"
    APPROVAL = "approval"
    NOTIFICATION = "notification"
    INTEGRATION = "integration"
    DECISION = "decision"
    DELAY = "delay"
    WEBHOOK = "webhook"
    SCRIPT = "script"
    FORM = "form"
    EMAIL = "email"
    SMS = "sms"
    SLACK = "slack"
    DATABASE = "database"
    FILE_UPLOAD = "file_upload"
    API_CALL = "api_call"


class ConditionOperator(str, Enum):
    """Comparison operators for gating conditions and decision criteria."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    IN = "in"
    NOT_IN = "not_in"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    REGEX = "regex"


class LogicalOperator(str, Enum):
    AND = "and"
    OR = "or"


class ActionType(str, Enum):
    """Action types attached to a step's success/failure/timeout lists."""

    SEND_NOTIFICATION = "send_notification"
    UPDATE_RECORD = "update_record"
    CREATE_RECORD = "create_record"
    DELETE_RECORD = "delete_record"
    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    WEBHOOK_CALL = "webhook_call"
    API_CALL = "api_call"
    FILE_OPERATION = "file_operation"
    SCRIPT_EXECUTION = "script_execution"
    WORKFLOW_TRIGGER = "workflow_trigger"
    STATUS_UPDATE = "status_update"
    VARIABLE_SET = "variable_set"
    LOG_ENTRY = "log_entry"
    APPROVAL_REQUEST = "approval_request"
    DELAY = "delay"
    CONDITION_CHECK = "condition_check"


class WorkflowCategory(str, Enum):
    ONBOARDING = "onboarding"
    TRAINING = "training"
    ASSESSMENT = "assessment"
    COMPLIANCE = "compliance"
    NOTIFICATION = "notification"
    APPROVAL = "approval"
    AUTOMATION = "automation"
    INTEGRATION = "integration"
    CUSTOM = "custom"


class TriggerType(str, Enum):
    """Workflow trigger type (recorded on definitions, not executed)."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    EVENT = "event"
    WEBHOOK = "webhook"
    API = "api"
    DATABASE = "database"
    FILE = "file"
    USER_ACTION = "user_action"
    SYSTEM_EVENT = "system_event"


class LogLevel(str, Enum):
    """Log level for execution logs."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AnalyticsPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


PERIOD_DAYS = {
    AnalyticsPeriod.DAILY: 1,
    AnalyticsPeriod.WEEKLY: 7,
    AnalyticsPeriod.MONTHLY: 30,
    AnalyticsPeriod.QUARTERLY: 90,
    AnalyticsPeriod.YEARLY: 365,
}


class AuditAction(str, Enum):
    """Audit action names emitted by the engine."""

    WORKFLOW_CREATED = "workflow_created"
    WORKFLOW_UPDATED = "workflow_updated"
    WORKFLOW_DELETED = "workflow_deleted"
    EXECUTION_STARTED = "execution_started"
    EXECUTION_PAUSED = "execution_paused"
    EXECUTION_RESUMED = "execution_resumed"
    EXECUTION_CANCELLED = "execution_cancelled"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"
    EXECUTION_TIMED_OUT = "execution_timed_out"
    STEP_APPROVED = "step_approved"
    STEP_REJECTED = "step_rejected"
