"""Workflow retry strategies.

Provides configurable retry policies for workflow steps and actions:
- Fixed delay
- Exponential backoff (with optional jitter)
- Linear backoff
- Restricting retries to named error types

Steps are retried by the scheduler (a failed step goes back to pending
with ``next_attempt_at`` set from ``compute_delay``); actions are retried
inline with ``execute_with_retry``.

Usage:
    strategy = RetryStrategy.for_step(step, settings)
    if strategy.should_retry(step_exec.retry_count, error):
        delay = strategy.compute_delay(step_exec.retry_count + 1)
"""

import asyncio
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from core.exceptions import ExecutionTimeout
from workflow.models import RetryConfig, WorkflowExecutionSettings, WorkflowStep


class RetryPolicy(str, Enum):
    """Available retry policies."""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    NONE = "none"


@dataclass
class RetryStrategy:
    """Configurable retry strategy."""
    policy: RetryPolicy
    max_retries: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 300.0
    jitter: bool = False
    jitter_range: float = 0.5
    retryable_errors: list[str] = field(default_factory=list)
    retry_on_timeout: bool = True

    @classmethod
    def none(cls) -> 'RetryStrategy':
        """No retries, fail immediately."""
        return cls(policy=RetryPolicy.NONE, max_retries=0)

    @classmethod
    def fixed(cls, max_retries: int = 3, delay: float = 5.0) -> 'RetryStrategy':
        """Fixed delay between retries."""
        return cls(
            policy=RetryPolicy.FIXED,
            max_retries=max_retries,
            base_delay=delay,
        )

    @classmethod
    def exponential(
        cls,
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        multiplier: float = 2.0,
        jitter: bool = False,
    ) -> 'RetryStrategy':
        """Exponential backoff: delay = base_delay * multiplier ** (attempt - 1)."""
        return cls(
            policy=RetryPolicy.EXPONENTIAL,
            max_retries=max_retries,
            base_delay=base_delay,
            max_delay=max_delay,
            multiplier=multiplier,
            jitter=jitter,
        )

    @classmethod
    def linear(
        cls,
        max_retries: int = 5,
        base_delay: float = 2.0,
        max_delay: float = 30.0,
    ) -> 'RetryStrategy':
        """Linear backoff: delay = base_delay * attempt_number."""
        return cls(
            policy=RetryPolicy.LINEAR,
            max_retries=max_retries,
            base_delay=base_delay,
            max_delay=max_delay,
        )

    @classmethod
    def from_retry_config(cls, config: Optional[RetryConfig]) -> 'RetryStrategy':
        """Build a strategy from a step's or action's ``retry`` block."""
        if config is None or config.max_attempts <= 0:
            return cls.none()
        if config.backoff_multiplier <= 1.0:
            return cls.fixed(max_retries=config.max_attempts, delay=config.delay)
        return cls.exponential(
            max_retries=config.max_attempts,
            base_delay=config.delay,
            max_delay=config.max_delay,
            multiplier=config.backoff_multiplier,
        )

    @classmethod
    def for_step(
        cls,
        step: WorkflowStep,
        settings: WorkflowExecutionSettings,
        max_delay: float = 300.0,
    ) -> 'RetryStrategy':
        """Resolve the effective strategy for a step.

        A step-level ``retry`` block wins; otherwise the execution settings
        apply, and ``allow_retry=False`` disables retries entirely.
        """
        if step.retry is not None:
            return cls.from_retry_config(step.retry)
        if not settings.allow_retry or settings.max_retries <= 0:
            return cls.none()
        return cls.from_retry_config(RetryConfig(
            max_attempts=settings.max_retries,
            delay=settings.retry_delay,
            backoff_multiplier=settings.backoff_multiplier,
            max_delay=max_delay,
        ))

    def compute_delay(self, attempt: int) -> float:
        """Compute the delay before retry number ``attempt`` (1-based)."""
        if self.policy == RetryPolicy.NONE:
            return 0.0

        if self.policy == RetryPolicy.FIXED:
            delay = self.base_delay
        elif self.policy == RetryPolicy.EXPONENTIAL:
            delay = self.base_delay * (self.multiplier ** (attempt - 1))
        elif self.policy == RetryPolicy.LINEAR:
            delay = self.base_delay * attempt
        else:
            delay = self.base_delay

        delay = min(delay, self.max_delay)

        if self.jitter and delay > 0:
            jitter_amount = delay * self.jitter_range
            delay = delay + random.uniform(-jitter_amount, jitter_amount)
            delay = max(0.0, delay)

        return round(delay, 3)

    def should_retry(self, attempt: int, error: Optional[Exception] = None) -> bool:
        """Whether another attempt is allowed after ``attempt`` retries so far."""
        if self.policy == RetryPolicy.NONE:
            return False

        if attempt >= self.max_retries:
            return False

        if error is None:
            return True

        if isinstance(error, (ExecutionTimeout, asyncio.TimeoutError)) and not self.retry_on_timeout:
            return False

        if self.retryable_errors:
            return type(error).__name__ in self.retryable_errors

        return True


async def execute_with_retry(
    func: Callable,
    strategy: RetryStrategy,
    *args,
    on_retry: Optional[Callable] = None,
    **kwargs,
):
    """Execute an async function with the given retry strategy.

    Args:
        func: Async callable to execute.
        strategy: RetryStrategy instance.
        on_retry: Optional callback(attempt, error, delay) called before each retry.

    Returns:
        The result of func(*args, **kwargs).

    Raises:
        The last exception if all retries are exhausted.
    """
    attempt = 0

    while True:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not strategy.should_retry(attempt, e):
                raise
            attempt += 1

            delay = strategy.compute_delay(attempt)

            if on_retry:
                if asyncio.iscoroutinefunction(on_retry):
                    await on_retry(attempt, e, delay)
                else:
                    on_retry(attempt, e, delay)

            await asyncio.sleep(delay)
