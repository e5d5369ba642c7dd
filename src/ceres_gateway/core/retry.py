"""Bounded exponential backoff driver for fallible async operations.

This module provides the retry engine used by the remote schema resolver. A
:class:`RetryOperation` re-invokes an async operation until a caller supplied
check reports success or the attempt budget is spent. The backoff schedule and
the attempt bookkeeping are delegated to ``tenacity``.

Key Components:
    - RetryPolicy: Immutable backoff policy (factor, minimum timeout, retries)
    - RetryOperation: One running retry loop with an interruptible backoff

Semantics:
    - Every attempt runs the operation, then evaluates the check regardless of
      whether the operation raised
    - A policy with ``retries = n`` allows at most ``n + 1`` attempts
    - ``on_stop(False)`` fires when the check passes, ``on_stop(True)`` when
      the budget is exhausted; ``stop()`` ends the loop without a callback

Thread Safety:
    - Not thread-safe; operations run as tasks on the current event loop

Example:
    >>> operation = RetryOperation(
    ...     operation=refresh,
    ...     check=lambda: resolver.is_schema_healthy(),
    ...     tag="fetch remote schema",
    ...     on_stop=lambda exceeded: None,
    ...     policy=RetryPolicy(factor=2, min_timeout=1.0, retries=5),
    ... )
    >>> operation.start()
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.stop import stop_base

logger = structlog.get_logger(__name__)

_MAX_WAIT_SECONDS = 3600.0


# ============================================================================
# POLICY
# ============================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff policy: wait ``min_timeout * factor ** attempt_index`` seconds."""

    factor: float = 2.0
    min_timeout: float = 1.0
    retries: int = 5
    max_timeout: float | None = None

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ValueError("retries must be non-negative")
        if self.factor < 1:
            raise ValueError("factor must be at least 1")
        if self.min_timeout < 0:
            raise ValueError("min_timeout must be non-negative")

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def wait_strategy(self) -> wait_exponential:
        return wait_exponential(
            multiplier=self.min_timeout,
            exp_base=self.factor,
            max=self.max_timeout if self.max_timeout is not None else _MAX_WAIT_SECONDS,
        )


class _stop_when_halted(stop_base):
    """Tenacity stop condition that fires once the operation has been stopped."""

    def __init__(self, operation: RetryOperation) -> None:
        self._operation = operation

    def __call__(self, retry_state: RetryCallState) -> bool:
        return self._operation.halted


# ============================================================================
# OPERATION
# ============================================================================

Check = Callable[[], bool | Awaitable[bool]]
StopCallback = Callable[[bool], None]
ErrorCallback = Callable[[BaseException], None]


class RetryOperation:
    """Retry an async action until ``check`` passes or the budget runs out.

    Attributes:
        tag: Diagnostic label included in every log event.
        policy: Backoff policy applied between attempts.
        attempts: Number of attempts performed so far.
        last_error: Exception raised by the most recent failing attempt.
        error: Exception raised by ``on_stop``, if any. It is handed to
            ``on_error`` when one is supplied, otherwise logged.
    """

    def __init__(
        self,
        *,
        operation: Callable[[], Awaitable[object]],
        check: Check,
        tag: str,
        on_stop: StopCallback,
        policy: RetryPolicy,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self.tag = tag
        self.policy = policy
        self.attempts = 0
        self.last_error: BaseException | None = None
        self.error: BaseException | None = None
        self._operation = operation
        self._check = check
        self._on_stop = on_stop
        self._on_error = on_error
        self._halted = False
        self._halt_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def halted(self) -> bool:
        return self._halted

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done() and not self._halted

    def start(self) -> None:
        """Schedule the retry loop on the running event loop."""
        if self._task is not None:
            return
        logger.info("retry.started", tag=self.tag, retries=self.policy.retries)
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"retry:{self.tag}")

    def stop(self) -> None:
        """Cancel any scheduled future attempt. Safe to call repeatedly."""
        if self._halted:
            return
        self._halted = True
        self._halt_event.set()
        logger.info("retry.stopped", tag=self.tag, attempts=self.attempts)

    async def wait(self) -> None:
        """Wait for the retry loop to finish."""
        if self._task is not None:
            await self._task

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._halt_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _attempt(self) -> bool | None:
        if self._halted:
            return None
        self.attempts += 1
        try:
            await self._operation()
        except Exception as exc:
            self.last_error = exc
            logger.warning(
                "retry.attempt.failed", tag=self.tag, attempt=self.attempts, error=str(exc)
            )
        if self._halted:
            return None
        try:
            passed = self._check()
            if inspect.isawaitable(passed):
                passed = await passed
        except Exception:
            logger.exception("retry.check.failed", tag=self.tag, attempt=self.attempts)
            return False
        return bool(passed)

    def _log_backoff(self, retry_state: RetryCallState) -> None:
        wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.info(
            "retry.backoff",
            tag=self.tag,
            attempt=retry_state.attempt_number,
            wait_seconds=round(wait, 3),
        )

    async def _run(self) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts) | _stop_when_halted(self),
            wait=self.policy.wait_strategy(),
            retry=retry_if_result(lambda passed: passed is False),
            sleep=self._sleep,
            before_sleep=self._log_backoff,
            retry_error_callback=lambda state: state.outcome.result() if state.outcome else False,
        )
        passed = await retrying(self._attempt)
        if passed is None or self._halted:
            return
        self._halted = True
        retries_exceeded = not passed
        if retries_exceeded:
            logger.error("retry.exhausted", tag=self.tag, attempts=self.attempts)
        else:
            logger.info("retry.succeeded", tag=self.tag, attempts=self.attempts)
        try:
            self._on_stop(retries_exceeded)
        except Exception as exc:
            self.error = exc
            if self._on_error is None:
                logger.exception("retry.on_stop.failed", tag=self.tag)
                return
            try:
                self._on_error(exc)
            except Exception:
                logger.exception("retry.on_error.failed", tag=self.tag)


__all__ = ["Check", "ErrorCallback", "RetryOperation", "RetryPolicy", "StopCallback"]
