"""Control steps: decisions and delays. No external collaborators."""

import asyncio
from typing import Any, Dict

from app.config import get_settings
from core.exceptions import StepExecutionError
from tasks.base_task import BaseStepHandler, StepContext
from workflow.conditions import ConditionEvaluator


class DecisionStepHandler(BaseStepHandler):
    """Evaluate criteria against the execution variables.

    Config:
        criteria: list of {field, operator, value, weight, logical_operator}

    Output ``result`` is the combined outcome; ``score`` sums the weights
    of the criteria that held individually.
    """

    step_type = "decision"
    display_name = "Decision"
    description = "Branch on criteria"

    async def execute(self, config, input, variables, context: StepContext) -> Dict[str, Any]:
        criteria = config.get("criteria", [])
        scope = {**variables, **input}

        evaluated = []
        score = 0.0
        for criterion in criteria:
            met = ConditionEvaluator.evaluate_condition(criterion, scope)
            if met:
                score += float(criterion.get("weight", 1) or 0)
            evaluated.append({**criterion, "met": met})

        result = ConditionEvaluator.evaluate_all(criteria, scope)
        return {
            "decision_id": context.reference("decision"),
            "result": result,
            "branch": "true" if result else "false",
            "score": score,
            "criteria": evaluated,
        }


class DelayStepHandler(BaseStepHandler):
    """Sleep for a while.

    Config:
        seconds: how long to wait (default: 0)

    Capped at DELAY_STEP_MAX_SECONDS. The scheduler's step timeout still
    applies, so a delay longer than the step timeout fails the step.
    """

    step_type = "delay"
    display_name = "Delay"
    description = "Wait before continuing"

    async def execute(self, config, input, variables, context: StepContext) -> Dict[str, Any]:
        try:
            seconds = float(config.get("seconds", 0))
        except (TypeError, ValueError):
            raise StepExecutionError(f"Invalid delay: {config.get('seconds')!r}")
        if seconds < 0:
            raise StepExecutionError("Delay cannot be negative")

        seconds = min(seconds, get_settings().DELAY_STEP_MAX_SECONDS)
        await asyncio.sleep(seconds)
        return {"delay_id": context.reference("delay"), "duration": seconds}


CONTROL_STEP_TYPES = {
    "decision": DecisionStepHandler,
    "delay": DelayStepHandler,
}
