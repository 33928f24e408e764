"""Workflow analytics.

Aggregates executions of one workflow within a period window:

- total / successful / failed executions, success rate
- average execution duration and completion rate
- per-step metrics and bottleneck steps
- most common errors
- active users and top users
"""

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Union

from core.constants import PERIOD_DAYS, AnalyticsPeriod, ExecutionStatus, StepStatus
from core.exceptions import ValidationError
from core.utils import utc_now
from workflow.models import WorkflowExecution

# A step is a bottleneck when its average duration exceeds this multiple
# of the mean step duration.
BOTTLENECK_FACTOR = 1.5
TOP_USERS = 5
TOP_ERRORS = 10


def _average(values: list[float]) -> float:
    return round(sum(values) / len(values), 3) if values else 0.0


def _rate(part: int, whole: int) -> float:
    return round(part * 100 / whole, 2) if whole else 0.0


def period_window(
    period: Union[AnalyticsPeriod, str],
    now: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """``(start, end)`` of the window ending at ``now``."""
    try:
        period = AnalyticsPeriod(period)
    except ValueError:
        raise ValidationError(f"Unknown analytics period: {period}")
    end = now or utc_now()
    return end - timedelta(days=PERIOD_DAYS[period]), end


def compute_analytics(
    executions: Iterable[WorkflowExecution],
    workflow_id: str,
    tenant_id: str,
    period: Union[AnalyticsPeriod, str] = AnalyticsPeriod.MONTHLY,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    start, end = period_window(period, now)
    selected = [
        e for e in executions
        if e.workflow_id == workflow_id and e.tenant_id == tenant_id and start <= e.started_at <= end
    ]

    total = len(selected)
    successful = sum(1 for e in selected if e.status == ExecutionStatus.COMPLETED)
    failed = sum(1 for e in selected if e.status in (ExecutionStatus.FAILED, ExecutionStatus.TIMED_OUT))
    finished = [e for e in selected if e.is_terminal]

    step_metrics = _step_metrics(selected)
    step_averages = [m["average_duration"] for m in step_metrics if m["average_duration"]]
    mean_step_duration = _average(step_averages)
    bottlenecks = [
        m["step_id"] for m in step_metrics
        if mean_step_duration and m["average_duration"] > mean_step_duration * BOTTLENECK_FACTOR
    ]

    return {
        "workflow_id": workflow_id,
        "tenant_id": tenant_id,
        "period": AnalyticsPeriod(period).value,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "total_executions": total,
        "successful_executions": successful,
        "failed_executions": failed,
        "success_rate": _rate(successful, total),
        "average_duration": _average([e.duration for e in finished if e.duration is not None]),
        "completion_rate": _rate(len(finished), total),
        "step_metrics": step_metrics,
        "average_step_duration": mean_step_duration,
        "bottleneck_steps": bottlenecks,
        "active_users": len({e.started_by for e in selected if e.started_by}),
        "top_users": _top_users(selected),
        "common_errors": _common_errors(selected),
        "generated_at": utc_now().isoformat(),
    }


def _step_metrics(executions: list[WorkflowExecution]) -> list[dict[str, Any]]:
    names: dict[str, str] = {}
    runs: dict[str, list] = defaultdict(list)

    for execution in executions:
        for step in execution.definition_snapshot.get("steps", []):
            names.setdefault(step["id"], step.get("name") or step["id"])
        for record in execution.steps:
            if record.attempts:
                runs[record.step_id].append((execution, record))

    metrics = []
    for step_id, pairs in runs.items():
        records = [r for _, r in pairs]
        completed = sum(1 for r in records if r.status == StepStatus.COMPLETED)
        waits = [
            (r.started_at - e.started_at).total_seconds()
            for e, r in pairs if r.started_at and r.started_at >= e.started_at
        ]
        metrics.append({
            "step_id": step_id,
            "step_name": names.get(step_id, step_id),
            "total_executions": len(records),
            "successful_executions": completed,
            "failed_executions": sum(1 for r in records if r.status == StepStatus.FAILED),
            "average_duration": _average([r.duration for r in records if r.duration is not None]),
            "success_rate": _rate(completed, len(records)),
            "average_wait_time": _average(waits),
        })
    return metrics


def _top_users(executions: list[WorkflowExecution]) -> list[dict[str, Any]]:
    by_user: dict[str, list[WorkflowExecution]] = defaultdict(list)
    for execution in executions:
        if execution.started_by:
            by_user[execution.started_by].append(execution)

    users = []
    for user_id, started in by_user.items():
        completed = [e for e in started if e.status == ExecutionStatus.COMPLETED]
        users.append({
            "user_id": user_id,
            "executions_started": len(started),
            "executions_completed": len(completed),
            "average_completion_time": _average([e.duration for e in completed if e.duration is not None]),
        })
    users.sort(key=lambda u: (-u["executions_started"], u["user_id"]))
    return users[:TOP_USERS]


def _common_errors(executions: list[WorkflowExecution]) -> list[dict[str, Any]]:
    counts: Counter = Counter()
    steps: dict[str, set] = defaultdict(set)
    last_seen: dict[str, datetime] = {}

    for execution in executions:
        for record in execution.steps:
            if record.status != StepStatus.FAILED or not record.error:
                continue
            counts[record.error] += 1
            steps[record.error].add(record.step_id)
            seen = record.completed_at or execution.started_at
            if record.error not in last_seen or seen > last_seen[record.error]:
                last_seen[record.error] = seen

    return [
        {
            "error_message": message,
            "occurrence_count": count,
            "affected_steps": sorted(steps[message]),
            "last_occurrence": last_seen[message].isoformat(),
        }
        for message, count in counts.most_common(TOP_ERRORS)
    ]


class WorkflowAnalytics:
    """Analytics over the executions held by an ExecutionStore."""

    def __init__(self, store):
        self.store = store

    async def get_analytics(
        self,
        workflow_id: str,
        tenant_id: str,
        period: Union[AnalyticsPeriod, str] = AnalyticsPeriod.MONTHLY,
    ) -> dict[str, Any]:
        executions = await self.store.list(workflow_id=workflow_id, tenant_id=tenant_id)
        return compute_analytics(executions, workflow_id, tenant_id, period)
