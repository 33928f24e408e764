"""
Base interface for all step handlers.

Every step type (task, email, webhook, decision, ...) is served by a
subclass of BaseStepHandler implementing execute(). Handlers only turn a
step's config plus the accumulated execution variables into an output
dict; retries, timeouts and execution logging belong to the scheduler.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, TypeVar

import structlog

from core.exceptions import StepExecutionError, WorkflowEngineError
from integrations.side_effects import SideEffects

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class StepContext:
    """Where a handler invocation sits inside an execution."""
    execution_id: str = ""
    workflow_id: str = ""
    tenant_id: str = ""
    step_id: str = ""
    step_name: str = ""
    timeout: Optional[float] = None
    attempt: int = 1

    def reference(self, prefix: str) -> str:
        """Deterministic id for records created by this invocation."""
        return f"{prefix}_{self.execution_id}_{self.step_id}_{self.attempt}"


class AwaitingApproval(Exception):
    """Raised by a handler whose step must wait for a human decision.

    Not a failure: the scheduler parks the step in ``waiting_for_approval``
    and stores ``output`` on it.
    """

    def __init__(self, output: Dict[str, Any]):
        self.output = output
        super().__init__("Step is waiting for approval")


class BaseStepHandler(ABC):
    """
    Abstract base class for step handlers.

    Subclasses must implement:
    - execute(config, input, variables, context) -> dict
    - step_type (class attribute)
    - display_name (class attribute)
    """

    step_type: str = "base"
    display_name: str = "Base Step"
    description: str = "Abstract step handler"

    def __init__(self, side_effects: Optional[SideEffects] = None):
        self.side_effects = side_effects or SideEffects()

    @abstractmethod
    async def execute(
        self,
        config: Dict[str, Any],
        input: Dict[str, Any],
        variables: Dict[str, Any],
        context: StepContext,
    ) -> Dict[str, Any]:
        """
        Produce the step output.

        Args:
            config: Step configuration with template expressions resolved
            input: The step's input (the execution input)
            variables: Accumulated execution variables
            context: Identity of this invocation

        Returns:
            Output dict stored on the step execution

        Raises:
            StepExecutionError: the step failed
            AwaitingApproval: the step must wait for a decision
        """

    async def run(
        self,
        config: Dict[str, Any],
        input: Dict[str, Any],
        variables: Dict[str, Any],
        context: StepContext,
    ) -> Dict[str, Any]:
        """
        Run the handler with timing and error normalisation.

        This is the entry point used by the registry. Engine errors and
        approval parking propagate unchanged; anything else raised by a
        collaborator becomes a StepExecutionError.
        """
        start = time.monotonic()
        try:
            output = await self.execute(config, input, variables, context)
        except (WorkflowEngineError, AwaitingApproval):
            raise
        except Exception as e:
            logger.warning(
                "Step handler raised",
                step_type=self.step_type,
                step_id=context.step_id,
                error=str(e),
            )
            raise StepExecutionError(f"{self.display_name} failed: {e}") from e

        logger.debug(
            "Step handler finished",
            step_type=self.step_type,
            step_id=context.step_id,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
        )
        return output if isinstance(output, dict) else {"result": output}

    def require(self, collaborator: Optional[T], name: str) -> T:
        """Return an injected collaborator or fail the step."""
        if collaborator is None:
            raise StepExecutionError(
                f"No {name} configured for '{self.step_type}' steps"
            )
        return collaborator

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        """
        Return JSON schema for the step configuration.

        Override in subclasses to define expected config shape.
        """
        return {"type": "object", "properties": {}}
