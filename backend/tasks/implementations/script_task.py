"""Script step.

Hands the script to the injected ScriptRunner together with the current
execution variables; the runner decides how (and whether) to sandbox it.
"""

from typing import Any, Dict

from core.exceptions import StepExecutionError
from integrations.side_effects import ScriptRequest
from tasks.base_task import BaseStepHandler, StepContext

SUPPORTED_LANGUAGES = ("javascript", "python", "sql")


class ScriptStepHandler(BaseStepHandler):
    """Run a script.

    Config:
        script: source code (required)
        language: javascript | python | sql (default: javascript)
        variables: extra variables merged over the execution variables
    """

    step_type = "script"
    display_name = "Script"
    description = "Run a script through the configured runner"

    async def execute(self, config, input, variables, context: StepContext) -> Dict[str, Any]:
        script = config.get("script")
        if not script:
            raise StepExecutionError("Script step requires a 'script'")

        language = config.get("language", "javascript")
        if language not in SUPPORTED_LANGUAGES:
            raise StepExecutionError(f"Unsupported script language: {language}")

        runner = self.require(self.side_effects.scripts, "script runner")
        result = await runner.run(ScriptRequest(
            script=script,
            language=language,
            variables={**variables, **config.get("variables", {})},
            timeout=context.timeout,
        ))
        return {
            "script_id": context.reference("script"),
            "language": language,
            "output": result.output,
            "logs": result.logs,
        }


SCRIPT_STEP_TYPES = {
    "script": ScriptStepHandler,
}
