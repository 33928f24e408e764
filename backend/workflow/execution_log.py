"""Per-execution append-only log.

Entries live on the execution record itself (``execution.logs``) and are
mirrored to the structured application log with the execution id bound.
Appending is an in-memory operation; persistence happens whenever the
store saves the execution.
"""

from typing import Any, Optional

import structlog

from core.constants import LogLevel
from workflow.models import WorkflowExecutionLog

logger = structlog.get_logger(__name__)

_STRUCTLOG_METHODS = {
    LogLevel.DEBUG.value: "debug",
    LogLevel.INFO.value: "info",
    LogLevel.WARNING.value: "warning",
    LogLevel.ERROR.value: "error",
}


class ExecutionLogger:
    """Appends entries to live executions held by an ExecutionStore."""

    def __init__(self, store):
        self._store = store

    def log(
        self,
        execution_id: str,
        level: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
        step_id: Optional[str] = None,
    ) -> Optional[WorkflowExecutionLog]:
        """Append an entry. Never raises.

        Returns the entry, or None when the execution is no longer live
        (terminal executions only accept entries written before they are
        released by the store).
        """
        level = level.value if isinstance(level, LogLevel) else str(level).lower()
        if level not in _STRUCTLOG_METHODS:
            level = LogLevel.INFO.value

        bound = logger.bind(execution_id=execution_id, step_id=step_id)
        try:
            getattr(bound, _STRUCTLOG_METHODS[level])(message, data=data or {})

            execution = self._store.get_active(execution_id)
            if execution is None:
                bound.warning("Execution log entry dropped: execution is not active")
                return None

            entry = WorkflowExecutionLog(
                level=level,
                message=message,
                step_id=step_id,
                data=dict(data or {}),
            )
            execution.logs.append(entry)
            return entry
        except Exception as e:
            bound.error("Failed to append execution log entry", error=str(e))
            return None
