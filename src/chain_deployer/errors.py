"""Error taxonomy shared by the orchestrator and its adapters."""

from __future__ import annotations

from typing import Optional


class DeployerError(Exception):
    """Base class for all chain-deployer errors."""


class ChainError(DeployerError):
    """Raised by a chain client when a remote operation fails."""


class TransientChainError(ChainError):
    """Retryable remote failure (timeout, network, consensus delay)."""


class RemoteRejectedError(ChainError):
    """The remote ledger explicitly refused the operation."""


class RetryExhaustedError(DeployerError):
    """A transient failure persisted through every allowed attempt."""

    def __init__(self, label: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"{label}: gave up after {attempts} attempt(s): {last_error}"
        )
        self.label = label
        self.attempts = attempts
        self.last_error = last_error


class OrderingError(DeployerError):
    """A step was reached before the checkpoint keys it depends on exist."""

    def __init__(self, step_key: str, missing: list[str]) -> None:
        super().__init__(
            f"Step '{step_key}' depends on missing checkpoint key(s): {', '.join(missing)}"
        )
        self.step_key = step_key
        self.missing = missing


class PersistenceError(DeployerError):
    """The checkpoint could not be read from or written to durable storage."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message if path is None else f"{message}: {path}")
        self.path = path


class PlanError(DeployerError):
    """The deployment plan is malformed."""


class ConfigError(DeployerError):
    """Required configuration is missing or invalid."""


class RunInterrupted(KeyboardInterrupt):
    """The operator terminated the run (SIGTERM)."""
