"""Bounded retry for single remote operations."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional, TypeVar

import requests

from ..errors import RetryExhaustedError, TransientChainError

if TYPE_CHECKING:
    from ..config import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FailureKind(Enum):
    """错误分类"""
    TRANSIENT = "transient"   # 可重试
    FATAL = "fatal"           # 立即终止


def default_classifier(exc: BaseException) -> FailureKind:
    """Network, timeout and consensus-delay errors are transient."""
    transient = (
        TransientChainError,
        TimeoutError,
        ConnectionError,
        requests.exceptions.ConnectionError,
        requests.exceptions.Timeout,
    )
    if isinstance(exc, transient):
        return FailureKind.TRANSIENT
    return FailureKind.FATAL


@dataclass
class RetryAttempt:
    """Runtime state for one step execution."""
    attempt: int = 0
    last_error: Optional[BaseException] = None


class RetryPolicy:
    """Re-attempts transient failures up to ``max_attempts`` total attempts.

    Fatal failures propagate unchanged on the first occurrence. When every
    attempt fails transiently a ``RetryExhaustedError`` is raised, chained to
    the last error.
    """

    def __init__(
        self,
        max_attempts: int = 2,
        classifier: Callable[[BaseException], FailureKind] = default_classifier,
        *,
        backoff_base: float = 0.0,
        backoff_max: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.classifier = classifier
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._sleep = sleep
        self.last_attempt: Optional[RetryAttempt] = None

    @classmethod
    def from_config(cls, config: "RetryConfig") -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            backoff_base=config.backoff_base,
            backoff_max=config.backoff_max,
        )

    def execute(self, operation: Callable[[], T], label: str = "operation") -> T:
        state = RetryAttempt()
        self.last_attempt = state
        while True:
            state.attempt += 1
            try:
                return operation()
            except Exception as exc:
                state.last_error = exc
                if self.classifier(exc) is not FailureKind.TRANSIENT:
                    raise
                if state.attempt >= self.max_attempts:
                    raise RetryExhaustedError(label, state.attempt, exc) from exc
                logger.warning(
                    f"   🔄 {label}: attempt {state.attempt}/{self.max_attempts} failed, retrying: {exc}"
                )
                delay = self._delay(state.attempt)
                if delay > 0:
                    self._sleep(delay)

    def _delay(self, attempt: int) -> float:
        if self.backoff_base <= 0:
            return 0.0
        return min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))
