"""Action dispatcher.

Runs a step's ``on_success`` / ``on_failure`` / ``on_timeout`` action list.
Actions execute in ascending ``order``, each one independently: a failing
action is logged at error level and the remaining actions still run.
Each action is bounded by ACTION_TIMEOUT and retried according to its own
``retry_config``. Start and outcome of every action are written to the
execution log.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog

from app.config import get_settings
from core.constants import ActionType, LogLevel
from core.exceptions import StepExecutionError
from integrations.side_effects import (
    ApprovalRequest,
    DatabaseOperation,
    DeliveryReceipt,
    FileOperation,
    HttpRequest,
    HttpResponse,
    Message,
    ScriptRequest,
    SideEffects,
)
from workflow.conditions import ConditionEvaluator
from workflow.execution_log import ExecutionLogger
from workflow.expressions import ExpressionEvaluator
from workflow.models import WorkflowAction, WorkflowExecution
from workflow.retry_strategies import RetryStrategy, execute_with_retry

logger = structlog.get_logger(__name__)

# (definition_id, input, parent execution) -> new execution id
WorkflowTrigger = Callable[[str, dict, WorkflowExecution], Awaitable[str]]

_RECORD_OPERATIONS = {
    ActionType.CREATE_RECORD.value: "insert",
    ActionType.UPDATE_RECORD.value: "update",
    ActionType.DELETE_RECORD.value: "delete",
}


class ActionDispatcher:
    """Executes WorkflowAction lists against the injected collaborators."""

    def __init__(
        self,
        side_effects: Optional[SideEffects] = None,
        execution_log: Optional[ExecutionLogger] = None,
        trigger_workflow: Optional[WorkflowTrigger] = None,
        action_timeout: Optional[float] = None,
    ):
        self.side_effects = side_effects or SideEffects()
        self.execution_log = execution_log
        self.trigger_workflow = trigger_workflow
        self.action_timeout = action_timeout or get_settings().ACTION_TIMEOUT

        self._handlers = {
            ActionType.SEND_NOTIFICATION.value: self._send_notification,
            ActionType.SEND_EMAIL.value: self._send_email,
            ActionType.SEND_SMS.value: self._send_sms,
            ActionType.WEBHOOK_CALL.value: self._webhook_call,
            ActionType.API_CALL.value: self._api_call,
            ActionType.CREATE_RECORD.value: self._record_operation,
            ActionType.UPDATE_RECORD.value: self._record_operation,
            ActionType.DELETE_RECORD.value: self._record_operation,
            ActionType.FILE_OPERATION.value: self._file_operation,
            ActionType.SCRIPT_EXECUTION.value: self._script_execution,
            ActionType.WORKFLOW_TRIGGER.value: self._workflow_trigger,
            ActionType.STATUS_UPDATE.value: self._status_update,
            ActionType.VARIABLE_SET.value: self._variable_set,
            ActionType.LOG_ENTRY.value: self._log_entry,
            ActionType.APPROVAL_REQUEST.value: self._approval_request,
            ActionType.DELAY.value: self._delay,
            ActionType.CONDITION_CHECK.value: self._condition_check,
        }

    async def dispatch(
        self,
        actions: list[WorkflowAction],
        execution: WorkflowExecution,
        step_output: Optional[dict[str, Any]] = None,
        step_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Run every action; return one result dict per action, in run order."""
        results = []
        for action in sorted(actions, key=lambda a: a.order):
            results.append(await self._dispatch_one(action, execution, step_output or {}, step_id))
        return results

    async def _dispatch_one(
        self,
        action: WorkflowAction,
        execution: WorkflowExecution,
        step_output: dict[str, Any],
        step_id: Optional[str],
    ) -> dict[str, Any]:
        strategy = RetryStrategy.from_retry_config(action.retry_config)
        attempts = 0

        async def attempt() -> Any:
            nonlocal attempts
            attempts += 1
            self._log(execution, LogLevel.INFO, f"Running action '{action.name or action.id}'", step_id, {
                "action_id": action.id,
                "action_type": action.type,
                "attempt": attempts,
            })
            return await asyncio.wait_for(
                self._run_action(action, execution, step_output, step_id),
                timeout=self.action_timeout,
            )

        def on_retry(retry: int, error: Exception, delay: float) -> None:
            self._log(execution, LogLevel.WARNING, f"Retrying action '{action.name or action.id}'", step_id, {
                "action_id": action.id,
                "retry": retry,
                "delay": delay,
                "error": str(error) or type(error).__name__,
            })

        try:
            result = await execute_with_retry(attempt, strategy, on_retry=on_retry)
        except Exception as e:
            error = str(e) or type(e).__name__
            if isinstance(e, asyncio.TimeoutError):
                error = f"Action timed out after {self.action_timeout}s"
            self._log(execution, LogLevel.ERROR, f"Action '{action.name or action.id}' failed: {error}", step_id, {
                "action_id": action.id,
                "action_type": action.type,
                "attempts": attempts,
                "error": error,
            })
            return {"action_id": action.id, "type": action.type, "status": "failed",
                    "attempts": attempts, "error": error}

        self._log(execution, LogLevel.INFO, f"Action '{action.name or action.id}' completed", step_id, {
            "action_id": action.id,
            "action_type": action.type,
            "attempts": attempts,
        })
        return {"action_id": action.id, "type": action.type, "status": "completed",
                "attempts": attempts, "result": result}

    async def _run_action(
        self,
        action: WorkflowAction,
        execution: WorkflowExecution,
        step_output: dict[str, Any],
        step_id: Optional[str],
    ) -> Any:
        handler = self._handlers.get(action.type)
        if handler is None:
            raise StepExecutionError(f"Unsupported action type: {action.type}")

        scope = {**execution.variables, "output": step_output}
        config = ExpressionEvaluator.resolve_config(action.config, scope)
        if action.type in _RECORD_OPERATIONS:
            config = {"operation": _RECORD_OPERATIONS[action.type], **config}
        return await handler(config, execution, step_output, step_id)

    def _log(self, execution, level, message, step_id, data) -> None:
        if self.execution_log is not None:
            self.execution_log.log(execution.id, level, message, data=data, step_id=step_id)
        else:
            getattr(logger, level.value)(message, execution_id=execution.id, step_id=step_id, **data)

    @staticmethod
    def _require(collaborator, name: str):
        if collaborator is None:
            raise StepExecutionError(f"No {name} configured")
        return collaborator

    # ─── Messaging ──────────────────────────────────────────────

    @staticmethod
    def _message(config: dict, execution: WorkflowExecution, channel: str) -> Message:
        recipients = config.get("recipients") or []
        if isinstance(recipients, str):
            recipients = [recipients]
        if not recipients:
            raise StepExecutionError("Action has no recipients")
        return Message(
            channel=config.get("channel", channel),
            recipients=[str(r) for r in recipients],
            template=config.get("template", ""),
            subject=config.get("subject", ""),
            body=config.get("body", config.get("message", "")),
            tenant_id=execution.tenant_id,
            data=config.get("data", {}),
        )

    @staticmethod
    def _delivered(receipt: DeliveryReceipt) -> dict:
        if receipt.status == "failed":
            raise StepExecutionError(receipt.error or f"Delivery over {receipt.channel} failed")
        return {"message_id": receipt.message_id, "status": receipt.status}

    async def _send_notification(self, config, execution, step_output, step_id):
        sender = self._require(self.side_effects.notifications, "notification sender")
        return self._delivered(await sender.send(self._message(config, execution, "notification")))

    async def _send_email(self, config, execution, step_output, step_id):
        sender = self._require(self.side_effects.email, "email sender")
        return self._delivered(await sender.send_email(self._message(config, execution, "email")))

    async def _send_sms(self, config, execution, step_output, step_id):
        sender = self._require(self.side_effects.sms, "SMS sender")
        return self._delivered(await sender.send_sms(self._message(config, execution, "sms")))

    # ─── HTTP ───────────────────────────────────────────────────

    @staticmethod
    def _http_request(config: dict, default_method: str, default_body: Any = None) -> HttpRequest:
        url = config.get("url") or config.get("endpoint")
        if not url:
            raise StepExecutionError("Action requires a 'url'")
        return HttpRequest(
            url=url,
            method=str(config.get("method", default_method)).upper(),
            headers=dict(config.get("headers") or {}),
            params=dict(config.get("params") or {}),
            body=config.get("body", default_body),
        )

    @staticmethod
    def _http_result(response: HttpResponse) -> dict:
        if not response.ok:
            raise StepExecutionError(f"HTTP {response.status_code} from remote endpoint")
        return {"status": response.status_code, "data": response.body}

    async def _webhook_call(self, config, execution, step_output, step_id):
        caller = self._require(self.side_effects.webhooks, "webhook caller")
        request = self._http_request(config, "POST", {
            "execution_id": execution.id,
            "workflow_id": execution.workflow_id,
            "step_id": step_id,
            "output": step_output,
        })
        return self._http_result(await caller.call(request))

    async def _api_call(self, config, execution, step_output, step_id):
        caller = self._require(self.side_effects.api, "API caller")
        return self._http_result(await caller.request(self._http_request(config, "GET")))

    # ─── Data ───────────────────────────────────────────────────

    async def _record_operation(self, config, execution, step_output, step_id):
        executor = self._require(self.side_effects.database, "database executor")
        operation = config.get("operation", "update")
        if not config.get("table") and not config.get("query"):
            raise StepExecutionError("Record action requires a 'table' or a 'query'")
        result = await executor.execute(DatabaseOperation(
            operation=operation,
            query=config.get("query"),
            table=config.get("table"),
            data=config.get("data", {}),
            where=config.get("where", {}),
            tenant_id=execution.tenant_id,
        ))
        return {"rows_affected": result.rows_affected}

    async def _file_operation(self, config, execution, step_output, step_id):
        store = self._require(self.side_effects.files, "file store")
        result = await store.handle(FileOperation(
            operation=config.get("operation", "copy"),
            source=config.get("source"),
            destination=config.get("destination"),
            options=config.get("options", {}),
            tenant_id=execution.tenant_id,
        ))
        return {"file_id": result.file_id, "status": result.status}

    async def _script_execution(self, config, execution, step_output, step_id):
        runner = self._require(self.side_effects.scripts, "script runner")
        if not config.get("script"):
            raise StepExecutionError("Script action requires a 'script'")
        result = await runner.run(ScriptRequest(
            script=config["script"],
            language=config.get("language", "javascript"),
            variables={**execution.variables, "output": step_output},
        ))
        return {"output": result.output}

    # ─── Engine-internal ────────────────────────────────────────

    async def _workflow_trigger(self, config, execution, step_output, step_id):
        if self.trigger_workflow is None:
            raise StepExecutionError("Workflow triggering is not available")
        workflow_id = config.get("workflow_id")
        if not workflow_id:
            raise StepExecutionError("Trigger action requires a 'workflow_id'")
        execution_id = await self.trigger_workflow(workflow_id, dict(config.get("input") or {}), execution)
        return {"execution_id": execution_id}

    async def _status_update(self, config, execution, step_output, step_id):
        field = config.get("field", "status")
        value = config.get("value", config.get("status"))
        execution.output[field] = value
        execution.variables[field] = value
        return {field: value}

    async def _variable_set(self, config, execution, step_output, step_id):
        updates = dict(config.get("variables") or {})
        if config.get("name"):
            updates[config["name"]] = config.get("value")
        if not updates:
            raise StepExecutionError("Variable action requires a 'name' or 'variables'")
        if "steps" in updates:
            raise StepExecutionError("'steps' is reserved for step outputs")
        execution.variables.update(updates)
        return {"variables_set": sorted(updates)}

    async def _log_entry(self, config, execution, step_output, step_id):
        message = config.get("message", "")
        level = config.get("level", LogLevel.INFO.value)
        if self.execution_log is not None:
            self.execution_log.log(execution.id, level, message, data=config.get("data"), step_id=step_id)
        return {"message": message, "level": level}

    async def _approval_request(self, config, execution, step_output, step_id):
        gateway = self._require(self.side_effects.approvals, "approval gateway")
        approvers = config.get("approvers") or []
        if isinstance(approvers, str):
            approvers = [approvers]
        ticket = await gateway.request(ApprovalRequest(
            tenant_id=execution.tenant_id,
            execution_id=execution.id,
            step_id=step_id or "",
            approvers=list(approvers),
            title=config.get("title", ""),
            data=config.get("data", {}),
        ))
        return {"approval_id": ticket.approval_id, "status": ticket.status}

    async def _delay(self, config, execution, step_output, step_id):
        try:
            seconds = float(config.get("seconds", 0))
        except (TypeError, ValueError):
            raise StepExecutionError(f"Invalid delay: {config.get('seconds')!r}")
        seconds = max(0.0, min(seconds, get_settings().DELAY_STEP_MAX_SECONDS))
        await asyncio.sleep(seconds)
        return {"duration": seconds}

    async def _condition_check(self, config, execution, step_output, step_id):
        scope = {**execution.variables, "output": step_output}
        if not ConditionEvaluator.evaluate_all(config.get("conditions", []), scope):
            raise StepExecutionError("Condition check failed")
        return {"result": True}
