"""Template expressions in step and action configs.

Config strings may reference execution data with ``{{ path }}``:

    {"recipients": ["{{ employee.email }}"]}
    {"subject": "Welcome, {{ employee.first_name }}!"}
    {"amount": "{{ steps.quote.total }}"}

A string that is exactly one expression resolves to the referenced value
with its type preserved; expressions embedded in text are substituted as
strings. Paths resolve against the execution variables (which include the
execution input and ``steps.<step_id>`` outputs). Unresolvable paths
leave the original text in place. No code is evaluated.
"""

import re
from typing import Any

from core.utils import resolve_path

_WHOLE = re.compile(r"^\s*\{\{\s*([\w.\-]+)\s*\}\}\s*$")
_EMBEDDED = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")
_MISSING = object()


class ExpressionEvaluator:
    """Resolves ``{{ path }}`` references against a variables mapping."""

    @staticmethod
    def evaluate(expression: Any, variables: dict) -> Any:
        if not isinstance(expression, str) or "{{" not in expression:
            return expression

        whole = _WHOLE.match(expression)
        if whole:
            value = resolve_path(variables, whole.group(1), _MISSING)
            return expression if value is _MISSING else value

        def _substitute(match: re.Match) -> str:
            value = resolve_path(variables, match.group(1), _MISSING)
            return match.group(0) if value is _MISSING else str(value)

        return _EMBEDDED.sub(_substitute, expression)

    @classmethod
    def resolve_config(cls, config: Any, variables: dict) -> Any:
        """Recursively resolve all template expressions in a config value."""
        if isinstance(config, dict):
            return {key: cls.resolve_config(value, variables) for key, value in config.items()}
        if isinstance(config, list):
            return [cls.resolve_config(item, variables) for item in config]
        return cls.evaluate(config, variables)
