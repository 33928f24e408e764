"""Tests for the workflow execution engine."""

import asyncio

import pytest

from conftest import DenyAllAccessChecker, make_definition, make_step, wait_until
from core.constants import ExecutionStatus, StepStatus
from core.exceptions import (
    InvalidStateTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)


async def run_definition(engine, definition, context, input=None):
    await engine.definitions.register(definition)
    execution = await engine.start_execution(definition["id"], input, context)
    await engine.run_until_idle(timeout=5)
    return await engine.get_execution(execution.id)


def messages(execution) -> list[str]:
    return [entry.message for entry in execution.logs]


@pytest.mark.unit
class TestStartExecution:

    async def test_returns_pending_execution_with_step_snapshot(self, engine, context):
        definition = make_definition([make_step("a", 1), make_step("b", 2, depends_on=["a"])])
        await engine.definitions.register(definition)

        execution = await engine.start_execution(definition["id"], {"name": "Ada"}, context)

        assert execution.status == ExecutionStatus.PENDING
        assert [s.step_id for s in execution.steps] == ["a", "b"]
        assert all(s.status == StepStatus.PENDING for s in execution.steps)
        assert execution.variables["name"] == "Ada"
        assert execution.started_by == "alice"

    async def test_two_starts_are_independent(self, engine, context, counting):
        definition = make_definition([make_step("a", 1)])
        await engine.definitions.register(definition)

        first = await engine.start_execution(definition["id"], {"n": 1}, context)
        second = await engine.start_execution(definition["id"], {"n": 1}, context)

        assert first.id != second.id
        assert first.steps[0].id != second.steps[0].id

        first.steps[0].status = StepStatus.FAILED
        await engine.run_until_idle(timeout=5)

        for execution_id in (first.id, second.id):
            execution = await engine.get_execution(execution_id)
            assert execution.status == ExecutionStatus.COMPLETED
            assert execution.step("a").status == StepStatus.COMPLETED
        assert counting.calls == 2

    async def test_unknown_definition(self, engine, context):
        with pytest.raises(NotFoundError):
            await engine.start_execution("missing", {}, context)

    async def test_inactive_definition_rejected(self, engine, context):
        definition = make_definition([make_step("a", 1)])
        definition["is_active"] = False
        await engine.definitions.register(definition)

        with pytest.raises(ValidationError):
            await engine.start_execution(definition["id"], {}, context)

    async def test_permission_denied(self, engine, context):
        definition = make_definition([make_step("a", 1)])
        await engine.definitions.register(definition)
        engine.access_checker = DenyAllAccessChecker()

        with pytest.raises(PermissionDenied):
            await engine.start_execution(definition["id"], {}, context)
        assert await engine.list_executions(workflow_id=definition["id"]) == []

    async def test_access_check_asks_for_execute(self, engine, context, access_checker):
        definition = make_definition([make_step("a", 1)])
        await engine.definitions.register(definition)

        await engine.start_execution(definition["id"], {}, context)

        assert ("tenant-1", "alice", "workflows", "execute") in access_checker.calls

    async def test_private_definition_of_other_tenant(self, engine, context):
        definition = make_definition([make_step("a", 1)], tenant_id="tenant-2")
        await engine.definitions.register(definition)

        with pytest.raises(PermissionDenied):
            await engine.start_execution(definition["id"], {}, context)

    async def test_execution_counter_bumped(self, engine, context):
        definition = make_definition([make_step("a", 1)])
        await engine.definitions.register(definition)

        await engine.start_execution(definition["id"], {}, context)

        stored = await engine.definitions.get(definition["id"])
        assert stored.execution_count == 1
        assert stored.last_executed_at is not None


@pytest.mark.integration
class TestScheduling:

    async def test_dependencies_conditions_and_progress(self, engine, context, counting):
        definition = make_definition([
            make_step("a", 1),
            make_step("b", 2, depends_on=["a"]),
            make_step("c", 3, depends_on=["a"], conditions=[
                {"field": "priority", "operator": "equals", "value": "high"},
            ]),
        ])

        execution = await run_definition(engine, definition, context, {"priority": "low"})

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.step("a").status == StepStatus.COMPLETED
        assert execution.step("b").status == StepStatus.COMPLETED
        assert execution.step("c").status == StepStatus.SKIPPED
        assert execution.progress == 100
        assert counting.calls == 2
        assert execution.output["skipped_steps"] == ["c"]

    async def test_finished_executions_leave_no_scheduler_state(self, engine, context, counting, gated):
        done = make_definition([make_step("a", 1)])
        expired = make_definition([make_step("a", 1, type="gated")], max_duration=0.1)
        await engine.definitions.register(done)
        await engine.definitions.register(expired)

        for _ in range(3):
            await engine.start_execution(done["id"], {}, context)
        await engine.start_execution(expired["id"], {}, context)
        await engine.run_until_idle(timeout=5)

        assert counting.calls == 3
        assert engine._in_flight == {}
        assert engine._plans == {}
        assert engine._timers == {}

    async def test_false_condition_never_invokes_handler(self, engine, context, counting):
        definition = make_definition([
            make_step("a", 1, conditions=[{"field": "amount", "operator": "greater_than", "value": 100}]),
        ])

        execution = await run_definition(engine, definition, context, {"amount": 5})

        assert execution.step("a").status == StepStatus.SKIPPED
        assert execution.step("a").attempts == 0
        assert counting.calls == 0
        assert "Step 'a' skipped: conditions not met" in messages(execution)

    async def test_steps_run_in_dependency_order_not_list_order(self, engine, context, counting):
        definition = make_definition([
            make_step("late", 1, depends_on=["early"]),
            make_step("early", 2),
        ])

        execution = await run_definition(engine, definition, context)

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.step("early").completed_at <= execution.step("late").started_at

    async def test_step_outputs_feed_templates(self, engine, context):
        definition = make_definition([
            make_step("a", 1),
            make_step("b", 2, depends_on=["a"], config={"previous": "{{ steps.a.call }}"}),
        ])

        execution = await run_definition(engine, definition, context)

        assert execution.step("b").output["config"]["previous"] == 1
        assert execution.variables["steps"]["a"]["call"] == 1

    async def test_variable_set_action_gates_later_step(self, engine, context, counting):
        definition = make_definition([
            make_step("a", 1, on_success=[
                {"type": "variable_set", "config": {"name": "approved_flag", "value": True}},
            ]),
            make_step("b", 2, depends_on=["a"], conditions=[
                {"field": "approved_flag", "operator": "equals", "value": True},
            ]),
        ])

        execution = await run_definition(engine, definition, context)

        assert execution.step("b").status == StepStatus.COMPLETED
        assert counting.calls == 2

    async def test_unsupported_step_type_is_not_retried(self, engine, context):
        definition = make_definition([
            make_step("a", 1, type="mystery", retry={"max_attempts": 3, "delay": 0}),
        ])

        execution = await run_definition(engine, definition, context)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.step("a").attempts == 1
        assert execution.step("a").error == "Unsupported step type: mystery"

    async def test_logs_record_lifecycle(self, engine, context):
        definition = make_definition([make_step("a", 1)])

        execution = await run_definition(engine, definition, context)

        log = messages(execution)
        assert log[0] == "Execution queued"
        assert "Execution started" in log
        assert "Step 'a' started" in log
        assert "Step 'a' completed" in log
        assert log[-1] == "Execution completed"


@pytest.mark.integration
class TestRetries:

    async def test_exhausted_retries_fail_step_and_run_on_failure_once(self, engine, context, counting, messenger):
        counting.fail_times = 10
        definition = make_definition([
            make_step("a", 1, retry={"max_attempts": 2, "delay": 0}, on_failure=[
                {"type": "send_notification", "config": {"recipients": ["ops@example.com"], "template": "step_failed"}},
            ]),
        ])

        execution = await run_definition(engine, definition, context)

        assert counting.calls == 3
        record = execution.step("a")
        assert record.status == StepStatus.FAILED
        assert record.retry_count == 2
        assert record.attempts == 3
        assert messenger.templates() == ["step_failed"]
        assert execution.status == ExecutionStatus.FAILED
        assert sum(1 for m in messages(execution) if m.startswith("Retrying step 'a'")) == 2

    async def test_recovers_within_retry_budget(self, engine, context, counting):
        counting.fail_times = 1
        definition = make_definition([make_step("a", 1)], max_retries=2, retry_delay=0)

        execution = await run_definition(engine, definition, context)

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.step("a").retry_count == 1
        assert counting.calls == 2
        assert any(m.startswith("Step 'a' failed on attempt 1") for m in messages(execution))

    async def test_allow_retry_false_disables_settings_retries(self, engine, context, counting):
        counting.fail_times = 1
        definition = make_definition([make_step("a", 1)], max_retries=3, allow_retry=False)

        execution = await run_definition(engine, definition, context)

        assert execution.status == ExecutionStatus.FAILED
        assert counting.calls == 1

    async def test_retry_waits_for_backoff(self, engine, context, counting):
        counting.fail_times = 1
        definition = make_definition([make_step("a", 1, retry={"max_attempts": 1, "delay": 0.05})])

        execution = await run_definition(engine, definition, context)

        assert execution.status == ExecutionStatus.COMPLETED
        assert counting.calls == 2


@pytest.mark.integration
class TestFailureHandling:

    async def test_continue_on_error_completes_with_failed_step(self, engine, context, counting):
        counting.fail_times = 1
        definition = make_definition([
            make_step("a", 1),
            make_step("b", 2, type="decision", config={"criteria": []}),
        ], continue_on_error=True)

        execution = await run_definition(engine, definition, context)

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.step("a").status == StepStatus.FAILED
        assert execution.step("b").status == StepStatus.COMPLETED
        assert execution.output["failed_steps"] == ["a"]

    async def test_optional_step_failure_does_not_fail_workflow(self, engine, context, counting):
        counting.fail_times = 1
        definition = make_definition([make_step("a", 1, is_required=False)])

        execution = await run_definition(engine, definition, context)

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.step("a").status == StepStatus.FAILED

    async def test_required_failure_cancels_remaining_steps(self, engine, context, counting):
        counting.fail_times = 1
        definition = make_definition([make_step("a", 1), make_step("b", 2, depends_on=["a"])])

        execution = await run_definition(engine, definition, context)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.error.startswith("Step 'a' failed")
        assert execution.step("b").status == StepStatus.CANCELLED
        assert execution.completed_at is not None

    async def test_second_action_runs_after_first_fails(self, engine, context, counting, messenger):
        counting.fail_times = 1
        messenger.failing = {"email"}
        definition = make_definition([
            make_step("a", 1, on_failure=[
                {"name": "first", "type": "send_email", "order": 1,
                 "config": {"recipients": ["ops@example.com"]}},
                {"name": "second", "type": "send_notification", "order": 2,
                 "config": {"recipients": ["ops@example.com"], "template": "second"}},
            ]),
        ])

        execution = await run_definition(engine, definition, context)

        log = messages(execution)
        assert "Running action 'first'" in log
        assert "Action 'first' failed: email gateway unavailable" in log
        assert "Running action 'second'" in log
        assert "Action 'second' completed" in log
        assert messenger.templates() == ["second"]
        errors = [e for e in execution.logs if e.message.startswith("Action 'first' failed")]
        assert errors[0].level == "error"

    async def test_rollback_runs_compensation_in_reverse(self, engine, context, messenger):
        definition = make_definition([
            make_step("a", 1, on_failure=[
                {"type": "send_notification", "config": {"recipients": ["ops"], "template": "undo_a"}},
            ]),
            make_step("b", 2, depends_on=["a"], on_failure=[
                {"type": "send_notification", "config": {"recipients": ["ops"], "template": "undo_b"}},
            ]),
            make_step("c", 3, type="script", depends_on=["b"], config={}),
        ], rollback_on_error=True)

        execution = await run_definition(engine, definition, context)

        assert execution.status == ExecutionStatus.FAILED
        assert messenger.templates() == ["undo_b", "undo_a"]
        assert "Compensating step 'b'" in messages(execution)

    async def test_no_rollback_without_flag(self, engine, context, messenger):
        definition = make_definition([
            make_step("a", 1, on_failure=[
                {"type": "send_notification", "config": {"recipients": ["ops"], "template": "undo_a"}},
            ]),
            make_step("b", 2, type="script", depends_on=["a"], config={}),
        ])

        execution = await run_definition(engine, definition, context)

        assert execution.status == ExecutionStatus.FAILED
        assert messenger.templates() == []


@pytest.mark.integration
class TestUnmetDependencies:

    async def test_failed_dependency_fails_execution_without_max_duration(self, engine, context, counting):
        counting.fail_times = 10
        definition = make_definition([
            make_step("a", 1),
            make_step("b", 2, depends_on=["a"]),
        ], continue_on_error=True)

        execution = await run_definition(engine, definition, context)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.step("b").status == StepStatus.FAILED
        assert execution.step("b").attempts == 0
        assert "waiting on: a" in execution.step("b").error
        assert counting.calls == 1

    async def test_undecided_dependency_times_out_with_max_duration(self, engine, context, counting):
        definition = make_definition([
            make_step("approve", 1, type="approval", config={"approvers": ["bob"]}),
            make_step("b", 2, depends_on=["approve"]),
        ], max_duration=0.2)

        execution = await run_definition(engine, definition, context)

        assert execution.status == ExecutionStatus.TIMED_OUT
        assert execution.step("approve").status == StepStatus.CANCELLED
        assert execution.step("b").status == StepStatus.CANCELLED
        assert counting.calls == 0
        assert "max duration" in execution.error


@pytest.mark.integration
class TestTimeouts:

    async def test_step_timeout_runs_on_timeout_actions(self, engine, context, messenger):
        definition = make_definition([
            make_step("wait", 1, type="delay", timeout=0.05, config={"seconds": 2},
                      on_failure=[{"type": "send_notification",
                                   "config": {"recipients": ["ops"], "template": "failure"}}],
                      on_timeout=[{"type": "send_notification",
                                   "config": {"recipients": ["ops"], "template": "timeout"}}]),
        ])

        execution = await run_definition(engine, definition, context)

        record = execution.step("wait")
        assert record.status == StepStatus.FAILED
        assert record.timed_out is True
        assert "timed out" in record.error
        assert messenger.templates() == ["timeout"]
        assert execution.status == ExecutionStatus.FAILED

    async def test_max_duration_exceeded_while_step_runs(self, engine, context, gated, messenger):
        definition = make_definition([
            make_step("a", 1, type="gated",
                      on_timeout=[{"type": "send_notification",
                                   "config": {"recipients": ["ops"], "template": "timeout"}}]),
            make_step("b", 2, depends_on=["a"]),
        ], max_duration=0.1)

        execution = await run_definition(engine, definition, context)

        assert execution.status == ExecutionStatus.TIMED_OUT
        record = execution.step("a")
        assert record.status == StepStatus.FAILED
        assert record.timed_out is True
        assert record.completed_at is not None
        assert "timed out" in record.error
        assert execution.step("b").status == StepStatus.CANCELLED
        assert messenger.templates() == ["timeout"]

    async def test_slow_action_is_cut_off_by_action_timeout(self, engine, context, counting):
        engine.dispatcher.action_timeout = 0.05
        slow = make_definition([
            make_step("a", 1, on_success=[{"type": "delay", "name": "Long pause", "config": {"seconds": 60}}]),
        ])
        quick = make_definition([make_step("b", 1)])
        await engine.definitions.register(slow)
        await engine.definitions.register(quick)

        first = await engine.start_execution(slow["id"], {}, context)
        second = await engine.start_execution(quick["id"], {}, context)
        await engine.run_until_idle(timeout=2)

        first = await engine.get_execution(first.id)
        second = await engine.get_execution(second.id)
        assert first.status == ExecutionStatus.COMPLETED
        assert second.status == ExecutionStatus.COMPLETED
        assert "Action 'Long pause' failed: Action timed out after 0.05s" in messages(first)
        assert counting.calls == 2


@pytest.mark.integration
class TestParallelSteps:

    async def test_parallel_steps_run_together(self, engine, context, gated, counting):
        definition = make_definition([
            make_step("a", 1, type="gated", is_parallel=True),
            make_step("b", 2, type="gated", is_parallel=True),
            make_step("c", 3, depends_on=["a", "b"]),
        ], allow_parallel=True, concurrency_limit=2)
        await engine.definitions.register(definition)

        execution = await engine.start_execution(definition["id"], {}, context)
        await wait_until(lambda: gated.running == 2)
        gated.release.set()
        await engine.run_until_idle(timeout=5)

        final = await engine.get_execution(execution.id)
        assert final.status == ExecutionStatus.COMPLETED
        assert gated.max_running == 2
        assert counting.calls == 1

    async def test_sequential_without_allow_parallel(self, engine, context, gated):
        definition = make_definition([
            make_step("a", 1, type="gated", is_parallel=True),
            make_step("b", 2, type="gated", is_parallel=True),
        ])
        await engine.definitions.register(definition)

        execution = await engine.start_execution(definition["id"], {}, context)
        await wait_until(lambda: gated.running == 1)
        await asyncio.sleep(0.05)
        assert gated.running == 1
        gated.release.set()
        await engine.run_until_idle(timeout=5)

        final = await engine.get_execution(execution.id)
        assert final.status == ExecutionStatus.COMPLETED
        assert gated.max_running == 1


@pytest.mark.integration
class TestExecutionControl:

    async def start_gated(self, engine, context, gated):
        definition = make_definition([make_step("a", 1, type="gated"), make_step("b", 2, depends_on=["a"])])
        await engine.definitions.register(definition)
        execution = await engine.start_execution(definition["id"], {}, context)
        await wait_until(lambda: gated.running == 1)
        return execution

    async def test_pause_and_resume(self, engine, context, gated, counting, audit_sink):
        execution = await self.start_gated(engine, context, gated)

        paused = await engine.pause_execution(execution.id, "alice")
        assert paused.status == ExecutionStatus.PAUSED
        with pytest.raises(InvalidStateTransition):
            await engine.pause_execution(execution.id, "alice")

        gated.release.set()
        await engine.run_until_idle(timeout=5)
        current = await engine.get_execution(execution.id)
        assert current.status == ExecutionStatus.PAUSED
        assert current.step("a").status == StepStatus.COMPLETED
        assert current.step("b").status == StepStatus.PENDING
        assert counting.calls == 0

        resumed = await engine.resume_execution(execution.id, "alice")
        assert resumed.status == ExecutionStatus.RUNNING
        await engine.run_until_idle(timeout=5)

        final = await engine.get_execution(execution.id)
        assert final.status == ExecutionStatus.COMPLETED
        assert counting.calls == 1
        assert "execution_paused" in audit_sink.actions()
        assert "execution_resumed" in audit_sink.actions()

    async def test_resume_running_execution_fails(self, engine, context, gated):
        execution = await self.start_gated(engine, context, gated)

        with pytest.raises(InvalidStateTransition):
            await engine.resume_execution(execution.id, "alice")

    async def test_cancel_discards_in_flight_result(self, engine, context, gated, counting, audit_sink):
        execution = await self.start_gated(engine, context, gated)

        cancelled = await engine.cancel_execution(execution.id, "alice")
        assert cancelled.status == ExecutionStatus.CANCELLED

        gated.release.set()
        await engine.run_until_idle(timeout=5)

        final = await engine.get_execution(execution.id)
        assert final.status == ExecutionStatus.CANCELLED
        assert final.step("a").status == StepStatus.CANCELLED
        assert final.step("b").status == StepStatus.CANCELLED
        assert counting.calls == 0
        assert "execution_cancelled" in audit_sink.actions()
        assert engine.get_active_executions() == []

    async def test_cancel_completed_execution_is_rejected(self, engine, context):
        definition = make_definition([make_step("a", 1)])
        execution = await run_definition(engine, definition, context)
        before = execution.to_dict()

        with pytest.raises(InvalidStateTransition):
            await engine.cancel_execution(execution.id, "alice")

        after = await engine.get_execution(execution.id)
        assert after.to_dict() == before

    async def test_control_of_unknown_execution(self, engine):
        with pytest.raises(NotFoundError):
            await engine.pause_execution("missing", "alice")

    async def test_control_requires_permission(self, engine, context, gated):
        execution = await self.start_gated(engine, context, gated)
        engine.access_checker = DenyAllAccessChecker()

        with pytest.raises(PermissionDenied):
            await engine.cancel_execution(execution.id, "mallory")


@pytest.mark.integration
class TestApprovals:

    async def start_approval(self, engine, context):
        definition = make_definition([
            make_step("approve", 1, type="approval", config={"approvers": ["bob"]}),
            make_step("b", 2, depends_on=["approve"]),
        ])
        await engine.definitions.register(definition)
        execution = await engine.start_execution(definition["id"], {}, context)
        await engine.run_until_idle(timeout=5)
        return execution

    async def test_waits_for_decision(self, engine, context, approvals):
        execution = await self.start_approval(engine, context)

        current = await engine.get_execution(execution.id)
        assert current.status == ExecutionStatus.RUNNING
        assert current.step("approve").status == StepStatus.WAITING_FOR_APPROVAL
        assert approvals.requests[0].approvers == ["bob"]

    async def test_approve_completes_step(self, engine, context, counting, audit_sink):
        execution = await self.start_approval(engine, context)

        decided = await engine.approve_step(execution.id, "approve", "bob", "looks good")
        assert decided.step("approve").status == StepStatus.APPROVED
        await engine.run_until_idle(timeout=5)

        final = await engine.get_execution(execution.id)
        assert final.status == ExecutionStatus.COMPLETED
        assert final.step("approve").status == StepStatus.COMPLETED
        assert final.step("approve").output["approver"] == "bob"
        assert final.variables["steps"]["approve"]["comments"] == "looks good"
        assert counting.calls == 1
        assert "step_approved" in audit_sink.actions()

    async def test_reject_fails_step(self, engine, context, counting):
        execution = await self.start_approval(engine, context)

        await engine.reject_step(execution.id, "approve", "bob", "no budget")
        await engine.run_until_idle(timeout=5)

        final = await engine.get_execution(execution.id)
        assert final.status == ExecutionStatus.FAILED
        assert final.step("approve").status == StepStatus.FAILED
        assert final.step("approve").error == "Rejected by bob: no budget"
        assert counting.calls == 0

    async def test_decision_on_step_not_waiting(self, engine, context):
        execution = await self.start_approval(engine, context)

        with pytest.raises(InvalidStateTransition):
            await engine.approve_step(execution.id, "b", "bob")
        with pytest.raises(NotFoundError):
            await engine.approve_step(execution.id, "nope", "bob")


@pytest.mark.integration
class TestNotificationsAndAudit:

    async def test_start_and_complete_notifications(self, engine, context, messenger):
        definition = make_definition(
            [make_step("a", 1)],
            notify_on_start=True,
            notify_on_complete=True,
            notify_recipients=["hr@example.com"],
        )

        await run_definition(engine, definition, context)

        assert messenger.templates() == ["workflow_started", "workflow_completed"]
        assert messenger.sent[0].recipients == ["hr@example.com"]

    async def test_error_notification(self, engine, context, counting, messenger):
        counting.fail_times = 1
        definition = make_definition([make_step("a", 1)], notify_on_error=True, notify_recipients=["hr"])

        await run_definition(engine, definition, context)

        assert messenger.templates() == ["workflow_failed"]

    async def test_notification_failure_does_not_fail_execution(self, engine, context, messenger):
        messenger.failing = {"notification"}
        definition = make_definition([make_step("a", 1)], notify_on_complete=True, notify_recipients=["hr"])

        execution = await run_definition(engine, definition, context)

        assert execution.status == ExecutionStatus.COMPLETED

    async def test_audit_events(self, engine, context, audit_sink):
        definition = make_definition([make_step("a", 1)])

        execution = await run_definition(engine, definition, context)

        assert audit_sink.actions() == ["workflow_created", "execution_started", "execution_completed"]
        assert audit_sink.events[-1]["resource"] == f"execution:{execution.id}"

    async def test_audit_logging_disabled(self, engine, context, audit_sink):
        definition = make_definition([make_step("a", 1)], audit_logging=False)

        await run_definition(engine, definition, context)

        assert audit_sink.events == []


@pytest.mark.integration
class TestWorkflowTrigger:

    async def test_on_success_triggers_child_execution(self, engine, context):
        child = make_definition([make_step("child_step", 1)])
        await engine.definitions.register(child)
        parent = make_definition([
            make_step("a", 1, on_success=[
                {"type": "workflow_trigger", "config": {"workflow_id": child["id"], "input": {"x": 1}}},
            ]),
        ])

        execution = await run_definition(engine, parent, context)

        assert execution.status == ExecutionStatus.COMPLETED
        children = await engine.list_executions(workflow_id=child["id"])
        assert len(children) == 1
        assert children[0].status == ExecutionStatus.COMPLETED
        assert children[0].input == {"x": 1}
        assert children[0].started_by == "alice"
