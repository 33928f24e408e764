"""Workflow definition validation.

Runs on every register/update, before anything is stored:

1. name is non-empty
2. at least one step
3. step ``order`` values are unique
4. step ids are unique and every ``depends_on`` target exists
5. the dependency graph is acyclic

Cycle detection is an iterative depth-first walk keeping a "visiting" and
a "visited" mark per step id; reaching a step that is still "visiting"
closes a cycle.
"""

from collections import Counter
from typing import Iterable, Optional

import structlog

from core.exceptions import ValidationError
from workflow.models import WorkflowDefinition, WorkflowStep

logger = structlog.get_logger(__name__)

_VISITING = 1
_VISITED = 2


def find_cycle(steps: Iterable[WorkflowStep]) -> Optional[tuple[str, str]]:
    """Return ``(step_id, dependency_id)`` for the edge closing a cycle, or None.

    ``dependency_id`` is the step reached while still marked visiting.
    """
    graph: dict[str, list[str]] = {s.id: list(s.depends_on) for s in steps}
    marks: dict[str, int] = {}

    for root in graph:
        if root in marks:
            continue

        marks[root] = _VISITING
        stack = [(root, iter(graph[root]))]

        while stack:
            node, deps = stack[-1]
            for dep in deps:
                mark = marks.get(dep)
                if mark == _VISITING:
                    return node, dep
                if mark is None and dep in graph:
                    marks[dep] = _VISITING
                    stack.append((dep, iter(graph[dep])))
                    break
            else:
                marks[node] = _VISITED
                stack.pop()

    return None


class DefinitionValidator:
    """Validates workflow definitions before they are accepted."""

    def validate(self, definition: WorkflowDefinition) -> None:
        """Raise ValidationError describing the first problem found."""
        if not definition.name or not definition.name.strip():
            raise ValidationError("Workflow name is required")

        if not definition.steps:
            raise ValidationError("Workflow must have at least one step")

        orders = Counter(step.order for step in definition.steps)
        duplicate_orders = sorted(order for order, count in orders.items() if count > 1)
        if duplicate_orders:
            raise ValidationError(
                f"Step orders must be unique (duplicated: {duplicate_orders})"
            )

        ids = Counter(step.id for step in definition.steps)
        duplicate_ids = sorted(step_id for step_id, count in ids.items() if count > 1)
        if duplicate_ids:
            raise ValidationError(
                f"Step ids must be unique (duplicated: {duplicate_ids})",
                step_id=duplicate_ids[0],
            )

        for step in definition.steps:
            unknown = [dep for dep in step.depends_on if dep not in ids]
            if unknown:
                raise ValidationError(
                    f"Step '{step.id}' depends on unknown step(s): {', '.join(unknown)}",
                    step_id=step.id,
                )

        cycle = find_cycle(definition.steps)
        if cycle:
            step_id, dependency_id = cycle
            logger.info(
                "Rejected cyclic workflow definition",
                workflow_id=definition.id,
                step_id=dependency_id,
            )
            raise ValidationError(
                f"Circular dependency detected: step '{step_id}' depends on "
                f"'{dependency_id}', which is already on the dependency path",
                step_id=dependency_id,
            )
