"""Retry policy: how a failing step is re-attempted.

The attempt loop is tenacity's; the delay schedule comes from
:class:`~property_sync.workflow.models.RetryPolicy`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from .errors import ConditionEvaluationError, UnknownActionError
from .models import RetryPolicy

Sleep = Callable[[float], Awaitable[None]]

# Deterministic failures: retrying cannot change the outcome.
NON_RETRYABLE: tuple[type[BaseException], ...] = (UnknownActionError, ConditionEvaluationError)


def is_retryable(exc: BaseException) -> bool:
    # Cancellation is a BaseException and must propagate, not be retried.
    return isinstance(exc, Exception) and not isinstance(exc, NON_RETRYABLE)


class wait_policy(wait_base):  # noqa: N801 (tenacity naming)
    """Tenacity wait strategy backed by a :class:`RetryPolicy`."""

    def __init__(self, policy: RetryPolicy) -> None:
        self.policy = policy

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.policy.delay_for(retry_state.attempt_number)


def build_retrying(
    policy: RetryPolicy,
    *,
    max_attempts: int | None = None,
    sleep: Sleep = asyncio.sleep,
    before_sleep: Callable[[RetryCallState], None] | None = None,
) -> AsyncRetrying:
    """Create the attempt loop for one step.

    ``max_attempts`` overrides the policy's budget (per-step override). The
    last attempt's exception is re-raised unchanged once the budget is spent.
    """

    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts or policy.max_attempts),
        wait=wait_policy(policy),
        retry=retry_if_exception(is_retryable),
        sleep=sleep,
        before_sleep=before_sleep,
        reraise=True,
    )
