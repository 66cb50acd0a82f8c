# src/chainmirror/engine/retry.py
"""Fetch retry policy built on tenacity.

Source calls flagged as transient are retried with exponential backoff and
jitter. ``max_attempts`` counts every try including the first one, so the
default of 3 means one call plus up to two retries.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

if TYPE_CHECKING:
    from chainmirror.core.config import RetrySettings

T = TypeVar("T")


class MaxRetriesExceeded(Exception):
    """Every attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")


@dataclass(frozen=True)
class RetryConfig:
    """Backoff parameters, in seconds where not stated otherwise.

    Wait before retry k (1-based) is ``base_delay * exponential_base**(k-1)``
    capped at ``max_delay``, plus up to ``jitter`` random seconds.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 1.0
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    @classmethod
    def no_retry(cls) -> "RetryConfig":
        return cls(max_attempts=1)

    @classmethod
    def from_settings(cls, settings: "RetrySettings") -> "RetryConfig":
        """Map the ``retry`` settings section onto backoff parameters."""
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.initial_delay_seconds,
            max_delay=settings.max_delay_seconds,
            jitter=settings.jitter_seconds,
            exponential_base=settings.exponential_base,
        )


class RetryManager:
    """Runs callables under a RetryConfig. Stateless, so one instance serves all threads.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=5))
        header = manager.execute_with_retry(
            source.current_head,
            is_retryable=lambda e: isinstance(e, FetchError) and e.retryable,
        )
    """

    def __init__(self, config: RetryConfig) -> None:
        self._config = config

    @property
    def config(self) -> RetryConfig:
        return self._config

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: Callable[[BaseException], bool],
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Call operation until it succeeds, fails permanently or runs out of attempts.

        Args:
            operation: Zero-argument callable to run
            is_retryable: Decides whether an exception earns another attempt
            on_retry: Called as ``on_retry(failed_attempt, error)`` just before
                sleeping, with ``failed_attempt`` counted from 0. Never called
                after the last attempt.

        Raises:
            MaxRetriesExceeded: If the last allowed attempt also failed retryably
            Exception: A non-retryable error, re-raised as is on first sight
        """
        retrying = Retrying(
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_exponential(
                multiplier=self._config.base_delay,
                max=self._config.max_delay,
                exp_base=self._config.exponential_base,
            )
            + wait_random(0, self._config.jitter),
            retry=retry_if_exception(is_retryable),
            before_sleep=_notify(on_retry) if on_retry is not None else None,
        )
        try:
            return retrying(operation)
        except RetryError as e:
            last = e.last_attempt
            error = last.exception()
            if error is None:  # pragma: no cover - retry predicate only matches exceptions
                raise
            raise MaxRetriesExceeded(last.attempt_number, error) from error


def _notify(on_retry: Callable[[int, BaseException], None]) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        if state.outcome is None:  # pragma: no cover
            return
        error = state.outcome.exception()
        if error is not None:
            on_retry(state.attempt_number - 1, error)

    return before_sleep
