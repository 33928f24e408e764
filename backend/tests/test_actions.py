"""Tests for the action dispatcher."""

import pytest
import pytest_asyncio

from conftest import RecordingMessenger
from integrations.side_effects import DatabaseExecutor, DatabaseResult, SideEffects
from workflow.actions import ActionDispatcher
from workflow.execution_log import ExecutionLogger
from workflow.models import WorkflowAction, WorkflowExecution, WorkflowExecutionContext
from workflow.store import ExecutionStore


class RecordingDatabase(DatabaseExecutor):
    def __init__(self):
        self.operations = []

    async def execute(self, operation):
        self.operations.append(operation)
        return DatabaseResult(rows_affected=1)


class FlakyDatabase(DatabaseExecutor):
    """Raises on the first ``failures`` calls."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def execute(self, operation):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("database unavailable")
        return DatabaseResult(rows_affected=1)


def action(type: str, order: int = 0, name: str = "", **fields) -> WorkflowAction:
    return WorkflowAction(type=type, order=order, name=name or type, **fields)


@pytest.fixture
def store() -> ExecutionStore:
    return ExecutionStore()


@pytest_asyncio.fixture
async def execution(store):
    record = WorkflowExecution(
        workflow_id="wf-1",
        tenant_id="tenant-1",
        context=WorkflowExecutionContext(tenant_id="tenant-1", user_id="alice"),
        variables={"employee": {"email": "ada@example.com"}},
    )
    await store.create(record)
    return record


def dispatcher(store, side_effects=None, **kwargs) -> ActionDispatcher:
    return ActionDispatcher(
        side_effects=side_effects or SideEffects(),
        execution_log=ExecutionLogger(store),
        **kwargs,
    )


def messages(execution) -> list[str]:
    return [entry.message for entry in execution.logs]


@pytest.mark.unit
class TestDispatch:

    async def test_runs_in_order(self, store, execution):
        actions = [
            action("log_entry", order=2, name="second", config={"message": "two"}),
            action("log_entry", order=1, name="first", config={"message": "one"}),
        ]

        results = await dispatcher(store).dispatch(actions, execution, step_id="a")

        assert [r["status"] for r in results] == ["completed", "completed"]
        assert messages(execution) == [
            "Running action 'first'", "one", "Action 'first' completed",
            "Running action 'second'", "two", "Action 'second' completed",
        ]
        assert all(entry.step_id == "a" for entry in execution.logs)

    async def test_failure_does_not_stop_the_rest(self, store, execution):
        messenger = RecordingMessenger(failing=("email",))
        actions = [
            action("send_email", order=1, name="mail", config={"recipients": ["x@y.z"]}),
            action("send_sms", order=2, name="text", config={"recipients": ["+100"]}),
        ]

        results = await dispatcher(store, SideEffects(email=messenger, sms=messenger)).dispatch(actions, execution)

        assert [r["status"] for r in results] == ["failed", "completed"]
        assert results[0]["error"] == "email gateway unavailable"
        failed = [e for e in execution.logs if e.level == "error"]
        assert [e.message for e in failed] == ["Action 'mail' failed: email gateway unavailable"]

    async def test_unknown_action_type(self, store, execution):
        results = await dispatcher(store).dispatch([action("teleport")], execution)
        assert results[0]["error"] == "Unsupported action type: teleport"

    async def test_missing_collaborator(self, store, execution):
        results = await dispatcher(store).dispatch(
            [action("send_notification", config={"recipients": ["ada"]})], execution,
        )
        assert results[0]["error"] == "No notification sender configured"

    async def test_retry_config(self, store, execution):
        database = FlakyDatabase(failures=2)
        retried = action("update_record", config={"table": "users"},
                         retry_config={"max_attempts": 2, "delay": 0.01})

        results = await dispatcher(store, SideEffects(database=database)).dispatch([retried], execution)

        assert results[0]["status"] == "completed"
        assert results[0]["attempts"] == 3
        assert messages(execution).count("Retrying action 'update_record'") == 2

    async def test_action_timeout(self, store, execution):
        slow = action("delay", config={"seconds": 5})

        results = await dispatcher(store, action_timeout=0.05).dispatch([slow], execution)

        assert results[0]["status"] == "failed"
        assert results[0]["error"] == "Action timed out after 0.05s"


@pytest.mark.unit
class TestActionTypes:

    async def test_templates_see_variables_and_output(self, store, execution):
        messenger = RecordingMessenger()
        notify = action("send_email", config={
            "recipients": ["{{ employee.email }}"],
            "subject": "Ticket {{ output.ticket }}",
        })

        await dispatcher(store, SideEffects(email=messenger)).dispatch(
            [notify], execution, step_output={"ticket": 42},
        )

        assert messenger.sent[0].recipients == ["ada@example.com"]
        assert messenger.sent[0].subject == "Ticket 42"

    @pytest.mark.parametrize("action_type,operation", [
        ("create_record", "insert"),
        ("update_record", "update"),
        ("delete_record", "delete"),
    ])
    async def test_record_operations(self, store, execution, action_type, operation):
        database = RecordingDatabase()

        await dispatcher(store, SideEffects(database=database)).dispatch(
            [action(action_type, config={"table": "users", "data": {"active": True}})], execution,
        )

        assert database.operations[0].operation == operation
        assert database.operations[0].tenant_id == "tenant-1"

    async def test_variable_set(self, store, execution):
        results = await dispatcher(store).dispatch(
            [action("variable_set", config={"name": "approved", "value": True, "variables": {"tier": 2}})],
            execution,
        )

        assert results[0]["result"] == {"variables_set": ["approved", "tier"]}
        assert execution.variables["approved"] is True
        assert execution.variables["tier"] == 2

    async def test_variable_set_rejects_steps(self, store, execution):
        results = await dispatcher(store).dispatch(
            [action("variable_set", config={"name": "steps", "value": {}})], execution,
        )
        assert results[0]["status"] == "failed"
        assert "reserved" in results[0]["error"]

    async def test_status_update(self, store, execution):
        await dispatcher(store).dispatch([action("status_update", config={"value": "escalated"})], execution)
        assert execution.output["status"] == "escalated"
        assert execution.variables["status"] == "escalated"

    async def test_condition_check(self, store, execution):
        passing = action("condition_check", order=1, name="pass", config={"conditions": [
            {"field": "output.score", "operator": "greater_than", "value": 5},
        ]})
        failing = action("condition_check", order=2, name="fail", config={"conditions": [
            {"field": "employee.email", "operator": "ends_with", "value": "@corp.com"},
        ]})

        results = await dispatcher(store).dispatch([passing, failing], execution, step_output={"score": 9})

        assert [r["status"] for r in results] == ["completed", "failed"]
        assert results[1]["error"] == "Condition check failed"

    async def test_workflow_trigger(self, store, execution):
        triggered = []

        async def trigger(workflow_id, input, parent):
            triggered.append((workflow_id, input, parent.id))
            return "exec-child"

        results = await dispatcher(store, trigger_workflow=trigger).dispatch(
            [action("workflow_trigger", config={"workflow_id": "wf-2", "input": {"x": 1}})], execution,
        )

        assert results[0]["result"] == {"execution_id": "exec-child"}
        assert triggered == [("wf-2", {"x": 1}, execution.id)]

    async def test_workflow_trigger_unavailable(self, store, execution):
        results = await dispatcher(store).dispatch(
            [action("workflow_trigger", config={"workflow_id": "wf-2"})], execution,
        )
        assert results[0]["error"] == "Workflow triggering is not available"

    async def test_without_execution_log(self, execution):
        quiet = ActionDispatcher(side_effects=SideEffects())
        results = await quiet.dispatch([action("log_entry", config={"message": "hello"})], execution)

        assert results[0]["result"] == {"message": "hello", "level": "info"}
        assert execution.logs == []

    async def test_delay_is_capped_at_zero(self, store, execution):
        results = await dispatcher(store).dispatch([action("delay", config={"seconds": -3})], execution)
        assert results[0]["result"] == {"duration": 0.0}
