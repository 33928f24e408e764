"""Workflow Execution Engine: dependency-aware step scheduler.

Takes validated workflow definitions and runs executions of them:

- Steps are walked in ascending ``order``; a step runs once every step in
  its ``depends_on`` is completed
- Gating conditions evaluated against execution variables (false → skipped)
- Retry with backoff per step (``retry`` block or execution settings)
- Timeout per step and per execution (``max_duration``)
- on_success / on_failure / on_timeout action lists
- Pause / resume / cancel, approval decisions
- Optional compensation pass (``rollback_on_error``)

Architecture (single processor, one inbox):
- One consumer task drains an asyncio.Queue. Items are "process this
  execution", step outcomes and approval decisions. Only this task
  mutates execution state.
- Handlers run as tasks bounded by an asyncio.Semaphore (HANDLER_POOL_SIZE)
  and asyncio.wait_for; their outcomes come back through the inbox.
- Retry backoff and max-duration deadlines are loop timers that put the
  execution back on the inbox.
- Steps flagged ``is_parallel`` run together (up to ``concurrency_limit``)
  when the execution allows parallelism; otherwise one step per execution
  is in flight at a time.
- Action lists (on_success / on_failure / on_timeout, compensation) are
  awaited on the processor itself, because actions such as ``set_variable``
  change state that later steps read. A slow action holds up every
  execution, for at most ACTION_TIMEOUT per attempt (times its
  ``retry_config`` attempts). Keep action work short; long-running work
  belongs in a step.

Step outputs are stored in ``variables["steps"][step_id]`` so later steps,
conditions and ``{{ }}`` templates can reference them.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from app.config import Settings, get_settings
from core.audit import AuditSink
from core.constants import AuditAction, ExecutionStatus, LogLevel, StepStatus
from core.exceptions import (
    DependencyNotMet,
    InvalidStateTransition,
    NotFoundError,
    PermissionDenied,
    UnsupportedStepType,
    ValidationError,
    WorkflowEngineError,
)
from core.rbac import AccessChecker
from core.utils import utc_now
from integrations.side_effects import Message
from tasks.base_task import AwaitingApproval, StepContext
from tasks.registry import StepHandlerRegistry
from workflow.actions import ActionDispatcher
from workflow.conditions import ConditionEvaluator
from workflow.execution_log import ExecutionLogger
from workflow.models import (
    WorkflowExecution,
    WorkflowExecutionContext,
    WorkflowExecutionSettings,
    WorkflowStep,
    WorkflowStepExecution,
)
from workflow.registry import DefinitionRegistry
from workflow.retry_strategies import RetryStrategy
from workflow.store import ExecutionStore

logger = logging.getLogger(__name__)

_PROCESS = "process"
_OUTCOME = "outcome"
_DECISION = "decision"

# Steps still waiting on something outside the scheduler.
_PARKED_STEP_STATUSES = (StepStatus.WAITING_FOR_APPROVAL, StepStatus.APPROVED, StepStatus.REJECTED)


@dataclass
class StepOutcome:
    """Result of one handler invocation, delivered back to the processor."""
    execution_id: str
    step_id: str
    attempt: int
    output: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    timed_out: bool = False
    # The timeout was the remaining max_duration budget, not the step's own.
    budget_exhausted: bool = False
    retryable: bool = True
    awaiting_approval: bool = False


@dataclass
class _Plan:
    """Step definitions and settings captured in an execution's snapshot."""
    steps: list[WorkflowStep]
    settings: WorkflowExecutionSettings

    def __post_init__(self):
        self.index = {step.id: step for step in self.steps}


class WorkflowEngine:
    """Runs workflow executions.

    All collaborators are injected; nothing here is process-global, so
    tests construct an engine with fakes and drive it with
    ``run_until_idle()``.
    """

    def __init__(
        self,
        definitions: DefinitionRegistry,
        handlers: StepHandlerRegistry,
        access_checker: AccessChecker,
        store: Optional[ExecutionStore] = None,
        audit_sink: Optional[AuditSink] = None,
        execution_log: Optional[ExecutionLogger] = None,
        dispatcher: Optional[ActionDispatcher] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.definitions = definitions
        self.handlers = handlers
        self.access_checker = access_checker
        self.store = store or definitions.executions or ExecutionStore()
        self.audit_sink = audit_sink
        self.execution_log = execution_log or ExecutionLogger(self.store)
        self.dispatcher = dispatcher or ActionDispatcher(
            side_effects=handlers.side_effects,
            execution_log=self.execution_log,
            trigger_workflow=self._trigger_workflow,
            action_timeout=self.settings.ACTION_TIMEOUT,
        )
        if self.definitions.executions is None:
            self.definitions.executions = self.store

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._semaphore = asyncio.Semaphore(self.settings.HANDLER_POOL_SIZE)
        self._processor: Optional[asyncio.Task] = None
        self._stopping = False
        self._handler_tasks: set[asyncio.Task] = set()
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._in_flight: dict[str, set[str]] = {}
        self._plans: dict[str, _Plan] = {}

        # Pending work: queued items, running handlers and armed timers.
        self._work = 0
        self._idle = asyncio.Event()
        self._idle.set()

    # ─── Public API ────────────────────────────────────────────

    async def start_execution(
        self,
        definition_id: str,
        input: Optional[dict[str, Any]],
        context: WorkflowExecutionContext,
    ) -> WorkflowExecution:
        """Create a pending execution of a definition and queue it.

        Raises:
            NotFoundError: unknown definition
            ValidationError: the definition is inactive
            PermissionDenied: the access check failed
        """
        definition = await self.definitions.get(definition_id)
        if definition is None:
            raise NotFoundError(f"Workflow definition '{definition_id}' not found")
        if not definition.is_active:
            raise ValidationError(f"Workflow definition '{definition_id}' is not active")

        allowed = await self.access_checker.can_execute(
            context.tenant_id, context.user_id, "workflows", "execute"
        )
        if not allowed:
            raise PermissionDenied("Not allowed to execute workflows")
        if definition.tenant_id != context.tenant_id and not definition.is_public:
            raise PermissionDenied("Workflow belongs to another tenant")

        settings = definition.execution_settings
        steps = definition.ordered_steps()
        input = copy.deepcopy(input or {})

        execution = WorkflowExecution(
            workflow_id=definition.id,
            tenant_id=context.tenant_id,
            context=copy.deepcopy(context),
            definition_snapshot={
                "name": definition.name,
                "version": definition.version,
                "revision": definition.revision,
                "steps": [step.model_dump(mode="json") for step in steps],
                "execution_settings": settings.model_dump(mode="json"),
            },
            input=input,
            variables={**copy.deepcopy(input), "steps": {}},
            steps=[
                WorkflowStepExecution(
                    step_id=step.id,
                    max_retries=self._retry_strategy(step, settings).max_retries,
                )
                for step in steps
            ],
            started_by=context.user_id,
        )

        await self.store.create(execution)
        await self.definitions.record_execution(definition.id)
        self.execution_log.log(execution.id, LogLevel.INFO, "Execution queued", data={
            "workflow_id": definition.id,
            "revision": definition.revision,
            "steps": len(steps),
        })
        await self._audit(execution, context.user_id, AuditAction.EXECUTION_STARTED, {
            "workflow_id": definition.id,
        })
        if settings.notify_on_start:
            await self._notify(execution, settings, "started")

        logger.info(f"Execution {execution.id} queued for workflow {definition.id}")
        self._enqueue((_PROCESS, execution.id))
        return execution.copy()

    async def get_execution(self, execution_id: str) -> WorkflowExecution:
        """Consistent copy of an execution."""
        execution = await self.store.get(execution_id)
        if execution is None:
            raise NotFoundError(f"Execution '{execution_id}' not found")
        return execution

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> list[WorkflowExecution]:
        return await self.store.list(workflow_id=workflow_id, tenant_id=tenant_id)

    def get_active_executions(self) -> list[WorkflowExecution]:
        return self.store.active()

    @property
    def queue_length(self) -> int:
        return self._inbox.qsize()

    async def pause_execution(self, execution_id: str, actor_id: str) -> WorkflowExecution:
        execution = await self._require_live(execution_id, actor_id, "pause")
        if execution.status != ExecutionStatus.RUNNING:
            raise InvalidStateTransition(
                f"Cannot pause execution in state '{execution.status.value}'"
            )

        execution.status = ExecutionStatus.PAUSED
        self._cancel_timer(execution_id)
        self.execution_log.log(execution_id, LogLevel.INFO, "Execution paused", data={"actor_id": actor_id})
        await self.store.save(execution)
        await self._audit(execution, actor_id, AuditAction.EXECUTION_PAUSED)
        return execution.copy()

    async def resume_execution(self, execution_id: str, actor_id: str) -> WorkflowExecution:
        execution = await self._require_live(execution_id, actor_id, "resume")
        if execution.status != ExecutionStatus.PAUSED:
            raise InvalidStateTransition(
                f"Cannot resume execution in state '{execution.status.value}'"
            )

        execution.status = ExecutionStatus.RUNNING
        self.execution_log.log(execution_id, LogLevel.INFO, "Execution resumed", data={"actor_id": actor_id})
        await self.store.save(execution)
        await self._audit(execution, actor_id, AuditAction.EXECUTION_RESUMED)
        self._enqueue((_PROCESS, execution_id))
        return execution.copy()

    async def cancel_execution(self, execution_id: str, actor_id: str) -> WorkflowExecution:
        """Cancel a non-terminal execution.

        Cooperative: handlers already in flight are not interrupted; their
        results are discarded when they arrive.
        """
        execution = await self._require_live(execution_id, actor_id, "cancel")

        execution.status = ExecutionStatus.CANCELLED
        execution.error = f"Cancelled by {actor_id}"
        self._cancel_open_steps(execution)
        self.execution_log.log(execution_id, LogLevel.INFO, "Execution cancelled", data={"actor_id": actor_id})
        await self._finalize(execution, AuditAction.EXECUTION_CANCELLED, actor_id=actor_id)
        return execution.copy()

    async def approve_step(
        self,
        execution_id: str,
        step_id: str,
        actor_id: str,
        comments: Optional[str] = None,
    ) -> WorkflowExecution:
        return await self._decide(execution_id, step_id, actor_id, True, comments)

    async def reject_step(
        self,
        execution_id: str,
        step_id: str,
        actor_id: str,
        comments: Optional[str] = None,
    ) -> WorkflowExecution:
        return await self._decide(execution_id, step_id, actor_id, False, comments)

    # ─── Processor lifecycle ───────────────────────────────────

    def start_processor(self) -> None:
        if self._stopping:
            return
        if self._processor is None or self._processor.done():
            self._processor = asyncio.create_task(self._run(), name="workflow-processor")

    async def stop_processor(self) -> None:
        """Stop the processor, in-flight handlers and timers."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

        self._stopping = True
        tasks = list(self._handler_tasks)
        if self._processor is not None:
            tasks.append(self._processor)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._stopping = False
        self._processor = None
        self._handler_tasks.clear()
        self._inbox = asyncio.Queue()
        self._work = 0
        self._idle.set()

    async def run_until_idle(self, timeout: Optional[float] = None) -> None:
        """Drive the processor until no queued items, handlers or timers remain."""
        self.start_processor()
        await asyncio.wait_for(self._idle.wait(), timeout)

    async def _run(self) -> None:
        while True:
            kind, payload = await self._inbox.get()
            try:
                if kind == _PROCESS:
                    await self._process(payload)
                elif kind == _OUTCOME:
                    await self._apply_outcome(payload)
                elif kind == _DECISION:
                    await self._apply_decision(*payload)
            except Exception as e:
                execution_id = payload if kind == _PROCESS else payload[0] if kind == _DECISION else payload.execution_id
                logger.error(f"Processor failed on {kind} for execution {execution_id}: {e}", exc_info=True)
                self.execution_log.log(execution_id, LogLevel.ERROR, f"Internal scheduler error: {e}")
            finally:
                self._done_work()

    # ─── Work accounting ───────────────────────────────────────

    def _add_work(self) -> None:
        self._work += 1
        self._idle.clear()

    def _done_work(self) -> None:
        self._work -= 1
        if self._work <= 0:
            self._work = 0
            self._idle.set()

    def _enqueue(self, item: tuple) -> None:
        self._add_work()
        self._inbox.put_nowait(item)
        self.start_processor()

    def _arm_timer(self, execution_id: str, when: datetime) -> None:
        """Re-process the execution at ``when`` (keeps an earlier timer)."""
        loop = asyncio.get_running_loop()
        delay = max((when - utc_now()).total_seconds(), 0.0)
        existing = self._timers.get(execution_id)
        if existing is not None:
            if existing.when() <= loop.time() + delay:
                return
            existing.cancel()
            self._done_work()

        self._add_work()
        self._timers[execution_id] = loop.call_later(delay, self._fire_timer, execution_id)

    def _fire_timer(self, execution_id: str) -> None:
        self._timers.pop(execution_id, None)
        self._enqueue((_PROCESS, execution_id))
        self._done_work()

    def _cancel_timer(self, execution_id: str) -> None:
        handle = self._timers.pop(execution_id, None)
        if handle is not None:
            handle.cancel()
            self._done_work()

    # ─── Scheduling pass ───────────────────────────────────────

    async def _process(self, execution_id: str) -> None:
        execution = self.store.get_active(execution_id)
        if execution is None or execution.is_terminal:
            return
        if execution.status == ExecutionStatus.PAUSED:
            return

        plan = self._plan(execution)
        settings = plan.settings

        if execution.status == ExecutionStatus.PENDING:
            execution.status = ExecutionStatus.RUNNING
            execution.started_at = utc_now()
            self.execution_log.log(execution_id, LogLevel.INFO, "Execution started")

        if self._expired(execution, settings):
            await self._time_out(execution, settings)
            return

        ready, next_wake = await self._walk(execution, plan)
        if execution.is_terminal:
            return

        self._launch_ready(execution, plan, ready)
        self._update_progress(execution)

        if all(record.is_terminal for record in execution.steps):
            # A required step that failed without ever running was blocked by a dependency.
            blocked = [
                r.step_id for r in execution.steps
                if r.status == StepStatus.FAILED and r.attempts == 0 and plan.index[r.step_id].is_required
            ]
            if blocked:
                await self._fail(execution, settings, f"Required steps never ran: {', '.join(blocked)}")
            else:
                await self._complete(execution, settings)
            return

        in_flight = self._in_flight.get(execution_id, set())
        parked = any(record.status in _PARKED_STEP_STATUSES for record in execution.steps)
        if not in_flight and not parked and next_wake is None:
            pending = [r.step_id for r in execution.steps if r.status == StepStatus.PENDING]
            error = DependencyNotMet(pending[0], pending[1:]) if pending else None
            message = f"No runnable steps remain: {error.message}" if error else "No runnable steps remain"
            self.execution_log.log(execution_id, LogLevel.ERROR, message, data={"pending": pending})
            await self._fail(execution, settings, message)
            return

        wake_at = [next_wake] if next_wake else []
        if settings.max_duration:
            wake_at.append(execution.started_at + timedelta(seconds=settings.max_duration))
        if wake_at:
            self._arm_timer(execution_id, min(wake_at))

        await self.store.save(execution)

    async def _walk(self, execution: WorkflowExecution, plan: _Plan):
        """Settle steps that can be decided without running a handler.

        Returns the steps ready to launch (ascending order) and the earliest
        pending retry time. Repeats until a pass changes nothing, so a skip
        late in the order can unblock or block steps earlier in it.
        """
        while True:
            changed = False
            ready: list[WorkflowStep] = []
            next_wake: Optional[datetime] = None
            now = utc_now()

            for step in plan.steps:
                record = execution.step(step.id)
                if record.status != StepStatus.PENDING:
                    continue

                unmet = [d for d in step.depends_on if execution.step(d).status != StepStatus.COMPLETED]
                if unmet:
                    settled = [d for d in unmet if execution.step(d).is_terminal]
                    if settled:
                        await self._block(execution, plan, step, record, settled)
                        if execution.is_terminal:
                            return [], None
                        changed = True
                    continue

                if record.next_attempt_at and record.next_attempt_at > now:
                    if next_wake is None or record.next_attempt_at < next_wake:
                        next_wake = record.next_attempt_at
                    continue

                if step.conditions and not ConditionEvaluator.evaluate_all(step.conditions, execution.variables):
                    record.status = StepStatus.SKIPPED
                    record.completed_at = now
                    self.execution_log.log(
                        execution.id, LogLevel.INFO,
                        f"Step '{step.id}' skipped: conditions not met",
                        step_id=step.id,
                    )
                    changed = True
                    continue

                ready.append(step)

            if not changed:
                return ready, next_wake

    def _launch_ready(self, execution: WorkflowExecution, plan: _Plan, ready: list[WorkflowStep]) -> None:
        settings = plan.settings
        in_flight = self._in_flight.setdefault(execution.id, set())
        limit = settings.concurrency_limit if settings.allow_parallel else 1

        for step in ready:
            if len(in_flight) >= limit:
                break
            concurrent = settings.allow_parallel and step.is_parallel
            if in_flight and not (concurrent and all(plan.index[s].is_parallel for s in in_flight)):
                break
            self._launch(execution, plan, step)
            if not concurrent:
                break

    def _launch(self, execution: WorkflowExecution, plan: _Plan, step: WorkflowStep) -> None:
        record = execution.step(step.id)
        record.status = StepStatus.IN_PROGRESS
        record.started_at = utc_now()
        record.attempts += 1
        record.input = copy.deepcopy(execution.input)
        record.next_attempt_at = None
        record.timed_out = False
        execution.current_step = step.id
        self._in_flight.setdefault(execution.id, set()).add(step.id)

        timeout, capped = self._step_timeout(execution, plan.settings, step)
        context = StepContext(
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
            tenant_id=execution.tenant_id,
            step_id=step.id,
            step_name=step.name,
            timeout=timeout,
            attempt=record.attempts,
        )
        self.execution_log.log(execution.id, LogLevel.INFO, f"Step '{step.id}' started", step_id=step.id, data={
            "type": step.type,
            "attempt": record.attempts,
            "timeout": timeout,
        })

        self._add_work()
        task = asyncio.create_task(self._run_handler(
            step,
            copy.deepcopy(record.input),
            copy.deepcopy(execution.variables),
            context,
            capped,
        ))
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)

    async def _run_handler(
        self,
        step: WorkflowStep,
        input: dict,
        variables: dict,
        context: StepContext,
        capped: bool = False,
    ) -> None:
        outcome = StepOutcome(context.execution_id, step.id, context.attempt)
        try:
            async with self._semaphore:
                outcome.output = await asyncio.wait_for(
                    self.handlers.execute(step.type, step.config, input, variables, context),
                    timeout=context.timeout,
                )
        except AwaitingApproval as e:
            outcome.output = e.output
            outcome.awaiting_approval = True
        except asyncio.TimeoutError:
            outcome.error = f"Step timed out after {context.timeout}s"
            outcome.timed_out = True
            outcome.budget_exhausted = capped
        except UnsupportedStepType as e:
            outcome.error = e.message
            outcome.retryable = False
        except WorkflowEngineError as e:
            outcome.error = e.message
        except asyncio.CancelledError:
            self._done_work()
            raise
        except Exception as e:
            outcome.error = str(e) or type(e).__name__

        self._enqueue((_OUTCOME, outcome))
        self._done_work()

    # ─── Applying outcomes ─────────────────────────────────────

    async def _apply_outcome(self, outcome: StepOutcome) -> None:
        self._in_flight.get(outcome.execution_id, set()).discard(outcome.step_id)

        execution = self.store.get_active(outcome.execution_id)
        if execution is None or execution.is_terminal:
            logger.info(
                f"Discarding result of step {outcome.step_id}: "
                f"execution {outcome.execution_id} is no longer running"
            )
            return

        record = execution.step(outcome.step_id)
        if record is None or record.status != StepStatus.IN_PROGRESS or record.attempts != outcome.attempt:
            self.execution_log.log(
                execution.id, LogLevel.WARNING,
                f"Discarded stale result of step '{outcome.step_id}'",
                step_id=outcome.step_id, data={"attempt": outcome.attempt},
            )
            return

        plan = self._plan(execution)
        step = plan.index[outcome.step_id]
        finished = utc_now()
        record.duration = (finished - record.started_at).total_seconds() if record.started_at else None

        if self._expired(execution, plan.settings) or outcome.budget_exhausted:
            record.error = outcome.error if outcome.timed_out else None
            record.timed_out = outcome.timed_out
            await self._time_out(execution, plan.settings)
            return

        if outcome.awaiting_approval:
            record.status = StepStatus.WAITING_FOR_APPROVAL
            record.output = outcome.output
            self.execution_log.log(
                execution.id, LogLevel.INFO,
                f"Step '{step.id}' waiting for approval",
                step_id=step.id, data={"approvers": outcome.output.get("approvers", [])},
            )
        elif outcome.error is None:
            await self._step_succeeded(execution, plan, step, record, outcome.output)
        else:
            await self._step_failed(execution, plan, step, record, outcome)

        if not execution.is_terminal:
            await self.store.save(execution)
            self._enqueue((_PROCESS, execution.id))

    async def _step_succeeded(self, execution, plan, step, record, output: dict) -> None:
        record.status = StepStatus.COMPLETED
        record.completed_at = utc_now()
        record.output = output
        record.error = None
        record.timed_out = False
        execution.variables.setdefault("steps", {})[step.id] = copy.deepcopy(output)
        self._update_progress(execution)

        self.execution_log.log(
            execution.id, LogLevel.INFO, f"Step '{step.id}' completed",
            step_id=step.id, data={"attempts": record.attempts, "duration": record.duration},
        )
        if step.on_success:
            await self.dispatcher.dispatch(step.on_success, execution, output, step.id)

    async def _step_failed(self, execution, plan, step, record, outcome: StepOutcome) -> None:
        record.error = outcome.error
        record.timed_out = outcome.timed_out
        self.execution_log.log(
            execution.id, LogLevel.ERROR,
            f"Step '{step.id}' failed on attempt {record.attempts}: {outcome.error}",
            step_id=step.id, data={"attempt": record.attempts, "timed_out": outcome.timed_out},
        )

        strategy = self._retry_strategy(step, plan.settings)
        error = asyncio.TimeoutError(outcome.error) if outcome.timed_out else RuntimeError(outcome.error)
        if outcome.retryable and strategy.should_retry(record.retry_count, error):
            record.retry_count += 1
            delay = strategy.compute_delay(record.retry_count)
            record.status = StepStatus.PENDING
            record.next_attempt_at = utc_now() + timedelta(seconds=delay) if delay > 0 else None
            self.execution_log.log(
                execution.id, LogLevel.WARNING,
                f"Retrying step '{step.id}' ({record.retry_count}/{record.max_retries}) in {delay}s",
                step_id=step.id, data={"retry": record.retry_count, "delay": delay},
            )
            return

        await self._settle_failure(execution, plan, step, record)

    async def _settle_failure(self, execution, plan, step, record) -> None:
        """Terminal step failure: run its actions, then fail the workflow if it must."""
        record.status = StepStatus.FAILED
        record.completed_at = utc_now()

        actions = step.on_timeout if record.timed_out else step.on_failure
        if actions:
            await self.dispatcher.dispatch(actions, execution, record.output, step.id)

        if step.is_required and not plan.settings.continue_on_error:
            await self._fail(execution, plan.settings, f"Step '{step.id}' failed: {record.error}")
        else:
            self.execution_log.log(
                execution.id, LogLevel.WARNING,
                f"Continuing after failure of step '{step.id}'",
                step_id=step.id,
            )

    async def _block(self, execution, plan, step, record, settled: list[str]) -> None:
        """A dependency ended without completing, so the step can never run."""
        error = DependencyNotMet(step.id, settled)
        record.status = StepStatus.FAILED
        record.completed_at = utc_now()
        record.error = error.message
        self.execution_log.log(
            execution.id, LogLevel.ERROR,
            f"Step '{step.id}' cannot run: {error.message}",
            step_id=step.id,
            data={"dependencies": {d: execution.step(d).status.value for d in settled}},
        )
        if step.is_required and not plan.settings.continue_on_error:
            await self._fail(execution, plan.settings, error.message)

    # ─── Approvals ─────────────────────────────────────────────

    async def _decide(self, execution_id, step_id, actor_id, approved: bool, comments) -> WorkflowExecution:
        execution = await self._require_live(execution_id, actor_id, "approve" if approved else "reject")
        record = execution.step(step_id)
        if record is None:
            raise NotFoundError(f"Step '{step_id}' not found in execution '{execution_id}'")
        if record.status != StepStatus.WAITING_FOR_APPROVAL:
            raise InvalidStateTransition(
                f"Step '{step_id}' is not waiting for approval (status '{record.status.value}')"
            )

        record.status = StepStatus.APPROVED if approved else StepStatus.REJECTED
        record.assignee = actor_id
        record.comments = comments
        record.output = {**record.output, "status": record.status.value, "approver": actor_id, "comments": comments}
        self.execution_log.log(
            execution_id, LogLevel.INFO,
            f"Step '{step_id}' {'approved' if approved else 'rejected'} by {actor_id}",
            step_id=step_id, data={"comments": comments},
        )
        await self._audit(
            execution, actor_id,
            AuditAction.STEP_APPROVED if approved else AuditAction.STEP_REJECTED,
            {"step_id": step_id, "comments": comments},
        )
        self._enqueue((_DECISION, (execution_id, step_id)))
        return execution.copy()

    async def _apply_decision(self, execution_id: str, step_id: str) -> None:
        execution = self.store.get_active(execution_id)
        if execution is None or execution.is_terminal:
            return
        record = execution.step(step_id)
        plan = self._plan(execution)
        step = plan.index[step_id]

        if record.status == StepStatus.APPROVED:
            await self._step_succeeded(execution, plan, step, record, record.output)
        elif record.status == StepStatus.REJECTED:
            record.error = f"Rejected by {record.assignee}" + (f": {record.comments}" if record.comments else "")
            self.execution_log.log(execution_id, LogLevel.ERROR, f"Step '{step_id}' failed: {record.error}",
                                   step_id=step_id)
            await self._settle_failure(execution, plan, step, record)
        else:
            return

        if not execution.is_terminal:
            await self.store.save(execution)
            self._enqueue((_PROCESS, execution_id))

    # ─── Finalization ──────────────────────────────────────────

    async def _complete(self, execution: WorkflowExecution, settings: WorkflowExecutionSettings) -> None:
        failed = [r.step_id for r in execution.steps if r.status == StepStatus.FAILED]
        execution.status = ExecutionStatus.COMPLETED
        execution.output.update({
            "completed_steps": [r.step_id for r in execution.steps if r.status == StepStatus.COMPLETED],
            "skipped_steps": [r.step_id for r in execution.steps if r.status == StepStatus.SKIPPED],
        })
        if failed:
            execution.output["failed_steps"] = failed

        self.execution_log.log(execution.id, LogLevel.INFO, "Execution completed", data={"failed_steps": failed})
        if settings.notify_on_complete:
            await self._notify(execution, settings, "completed")
        await self._finalize(execution, AuditAction.EXECUTION_COMPLETED)

    async def _fail(self, execution: WorkflowExecution, settings: WorkflowExecutionSettings, error: str) -> None:
        execution.status = ExecutionStatus.FAILED
        execution.error = error
        self._cancel_open_steps(execution)
        self.execution_log.log(execution.id, LogLevel.ERROR, f"Execution failed: {error}")

        if settings.rollback_on_error:
            await self._rollback(execution)
        if settings.notify_on_error:
            await self._notify(execution, settings, "failed")
        await self._finalize(execution, AuditAction.EXECUTION_FAILED)

    async def _time_out(self, execution: WorkflowExecution, settings: WorkflowExecutionSettings) -> None:
        """Execution ran past max_duration.

        Steps whose handler was still running are cut off by the deadline:
        they fail as timed out and run their on_timeout actions. Every
        other open step is cancelled.
        """
        execution.status = ExecutionStatus.TIMED_OUT
        execution.error = f"Execution exceeded max duration of {settings.max_duration}s"
        now = utc_now()
        cut_off = [r for r in execution.steps if r.status == StepStatus.IN_PROGRESS]
        for record in cut_off:
            if not (record.timed_out and record.error):
                record.error = f"Step timed out: {execution.error}"
            record.status = StepStatus.FAILED
            record.timed_out = True
            record.completed_at = now
        self._cancel_open_steps(execution)
        self.execution_log.log(execution.id, LogLevel.ERROR, execution.error)

        plan = self._plan(execution)
        for record in cut_off:
            step = plan.index[record.step_id]
            self.execution_log.log(
                execution.id, LogLevel.ERROR, f"Step '{step.id}' timed out: {record.error}", step_id=step.id
            )
            if step.on_timeout:
                await self.dispatcher.dispatch(step.on_timeout, execution, record.output, step.id)

        if settings.notify_on_error:
            await self._notify(execution, settings, "timed_out")
        await self._finalize(execution, AuditAction.EXECUTION_TIMED_OUT)

    async def _rollback(self, execution: WorkflowExecution) -> None:
        """Compensation pass: on_failure actions of completed steps, newest first."""
        plan = self._plan(execution)
        completed = sorted(
            (r for r in execution.steps if r.status == StepStatus.COMPLETED),
            key=lambda r: r.completed_at,
            reverse=True,
        )
        for record in completed:
            step = plan.index[record.step_id]
            if not step.on_failure:
                continue
            self.execution_log.log(
                execution.id, LogLevel.WARNING, f"Compensating step '{step.id}'", step_id=step.id
            )
            await self.dispatcher.dispatch(step.on_failure, execution, record.output, step.id)

    async def _finalize(
        self,
        execution: WorkflowExecution,
        action: AuditAction,
        actor_id: Optional[str] = None,
    ) -> None:
        execution.completed_at = utc_now()
        execution.duration = (execution.completed_at - execution.started_at).total_seconds()
        self._update_progress(execution)
        self._cancel_timer(execution.id)
        self._plans.pop(execution.id, None)
        self._in_flight.pop(execution.id, None)

        logger.info(f"Execution {execution.id} finished with status {execution.status.value}")
        await self.store.release(execution)
        await self._audit(execution, actor_id or execution.started_by, action, {
            "status": execution.status.value,
            "error": execution.error,
            "duration": execution.duration,
        })

    # ─── Helpers ───────────────────────────────────────────────

    async def _require_live(self, execution_id: str, actor_id: str, operation: str) -> WorkflowExecution:
        """Live execution the actor may steer; raises for unknown or finished ones."""
        execution = self.store.get_active(execution_id)
        if execution is None:
            if await self.store.get(execution_id) is None:
                raise NotFoundError(f"Execution '{execution_id}' not found")
            raise InvalidStateTransition(f"Cannot {operation} a finished execution")

        allowed = await self.access_checker.can_execute(execution.tenant_id, actor_id, "workflows", "manage")
        if not allowed:
            raise PermissionDenied(f"Not allowed to {operation} this execution")

        # The check above awaited; the execution may have finished meanwhile.
        if execution.is_terminal:
            raise InvalidStateTransition(f"Cannot {operation} a finished execution")
        return execution

    def _plan(self, execution: WorkflowExecution) -> _Plan:
        plan = self._plans.get(execution.id)
        if plan is None:
            plan = _Plan(execution.snapshot_steps(), execution.snapshot_settings())
            self._plans[execution.id] = plan
        return plan

    def _retry_strategy(self, step: WorkflowStep, settings: WorkflowExecutionSettings) -> RetryStrategy:
        return RetryStrategy.for_step(step, settings, max_delay=self.settings.MAX_RETRY_DELAY)

    def _step_timeout(self, execution, settings: WorkflowExecutionSettings, step: WorkflowStep) -> tuple[float, bool]:
        """Effective timeout, and whether the remaining max_duration budget set it."""
        timeout = step.timeout or settings.timeout or self.settings.DEFAULT_STEP_TIMEOUT
        if settings.max_duration:
            elapsed = (utc_now() - execution.started_at).total_seconds()
            remaining = max(settings.max_duration - elapsed, 0.001)
            if remaining < timeout:
                return remaining, True
        return timeout, False

    @staticmethod
    def _expired(execution: WorkflowExecution, settings: WorkflowExecutionSettings) -> bool:
        if not settings.max_duration:
            return False
        return (utc_now() - execution.started_at).total_seconds() >= settings.max_duration

    @staticmethod
    def _update_progress(execution: WorkflowExecution) -> None:
        if not execution.steps:
            execution.progress = 100
            return
        done = sum(1 for r in execution.steps if r.status in (StepStatus.COMPLETED, StepStatus.SKIPPED))
        execution.progress = int(done * 100 / len(execution.steps))

    def _cancel_open_steps(self, execution: WorkflowExecution) -> None:
        now = utc_now()
        for record in execution.steps:
            if not record.is_terminal:
                record.status = StepStatus.CANCELLED
                record.completed_at = now

    async def _audit(self, execution, actor_id, action: AuditAction, details: Optional[dict] = None) -> None:
        if self.audit_sink is None:
            return
        if not execution.definition_snapshot.get("execution_settings", {}).get("audit_logging", True):
            return
        await self.audit_sink.log(
            execution.tenant_id, actor_id, action.value, f"execution:{execution.id}", details or {}
        )

    async def _notify(self, execution: WorkflowExecution, settings: WorkflowExecutionSettings, event: str) -> None:
        sender = self.handlers.side_effects.notifications
        if sender is None or not settings.notify_recipients:
            return
        name = execution.definition_snapshot.get("name", execution.workflow_id)
        try:
            await sender.send(Message(
                channel="notification",
                recipients=list(settings.notify_recipients),
                template=f"workflow_{event}",
                subject=f"Workflow '{name}' {event.replace('_', ' ')}",
                tenant_id=execution.tenant_id,
                data={
                    "execution_id": execution.id,
                    "workflow_id": execution.workflow_id,
                    "status": execution.status.value,
                    "error": execution.error,
                },
            ))
        except Exception as e:
            self.execution_log.log(execution.id, LogLevel.WARNING, f"Workflow notification failed: {e}")

    async def _trigger_workflow(self, definition_id: str, input: dict, parent: WorkflowExecution) -> str:
        """Start another workflow on behalf of a running execution."""
        child = await self.start_execution(definition_id, input, parent.context)
        self.execution_log.log(parent.id, LogLevel.INFO, f"Triggered workflow '{definition_id}'", data={
            "execution_id": child.id,
        })
        return child.id
