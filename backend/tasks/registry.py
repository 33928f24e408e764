"""
Step Handler Registry: maps step type tags to handler implementations.

New step types are additive: register a BaseStepHandler subclass (or an
instance) under its tag; nothing else in the engine changes.
"""

from typing import Any, Dict, Optional, Type, Union

from core.exceptions import UnsupportedStepType
from integrations.side_effects import SideEffects
from tasks.base_task import BaseStepHandler, StepContext
from tasks.implementations.control_task import CONTROL_STEP_TYPES
from tasks.implementations.data_task import DATA_STEP_TYPES
from tasks.implementations.http_task import HTTP_STEP_TYPES
from tasks.implementations.human_task import HUMAN_STEP_TYPES
from tasks.implementations.messaging_task import MESSAGING_STEP_TYPES
from tasks.implementations.script_task import SCRIPT_STEP_TYPES
from workflow.expressions import ExpressionEvaluator


class StepHandlerRegistry:
    """Central registry for all step handler implementations."""

    def __init__(self, side_effects: Optional[SideEffects] = None):
        self.side_effects = side_effects or SideEffects()
        self._handlers: Dict[str, BaseStepHandler] = {}
        self._register_builtin_handlers()

    def _register_builtin_handlers(self):
        """Register all built-in step types."""
        for group in (
            HUMAN_STEP_TYPES,
            MESSAGING_STEP_TYPES,
            HTTP_STEP_TYPES,
            SCRIPT_STEP_TYPES,
            DATA_STEP_TYPES,
            CONTROL_STEP_TYPES,
        ):
            for step_type, handler_class in group.items():
                self.register(step_type, handler_class)

    def register(
        self,
        step_type: str,
        handler: Union[BaseStepHandler, Type[BaseStepHandler]],
    ) -> None:
        """Register (or replace) the handler for a step type."""
        if isinstance(handler, type):
            handler = handler(self.side_effects)
        self._handlers[step_type] = handler

    def get(self, step_type: str) -> Optional[BaseStepHandler]:
        return self._handlers.get(step_type)

    async def execute(
        self,
        step_type: str,
        config: Dict[str, Any],
        input: Dict[str, Any],
        variables: Dict[str, Any],
        context: Optional[StepContext] = None,
    ) -> Dict[str, Any]:
        """Dispatch to the handler for ``step_type`` and return its output.

        ``{{ path }}`` references in the config are resolved against the
        variables before the handler sees them.

        Raises:
            UnsupportedStepType: nothing registered for the tag
            StepExecutionError: the handler failed
            AwaitingApproval: the step must wait for a decision
        """
        handler = self._handlers.get(step_type)
        if handler is None:
            raise UnsupportedStepType(step_type)

        resolved = ExpressionEvaluator.resolve_config(config or {}, variables)
        return await handler.run(resolved, input or {}, variables, context or StepContext())

    def list_all(self) -> list:
        """List all registered step types with metadata."""
        return [
            {
                "step_type": step_type,
                "display_name": handler.display_name,
                "description": handler.description,
                "config_schema": handler.get_config_schema(),
            }
            for step_type, handler in self._handlers.items()
        ]

    @property
    def available_types(self) -> list:
        return list(self._handlers.keys())
