"""Data models for the orchestrator module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from ..errors import OrderingError, PlanError

if TYPE_CHECKING:
    from ..chain.base import ChainClient


class StepState(Enum):
    """步骤执行状态"""
    PENDING = "pending"
    SKIPPED = "skipped"
    EXECUTING = "executing"
    COMMITTED = "committed"
    FAILED = "failed"


class RunState(Enum):
    """整体运行状态"""
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


_MISSING = object()


@dataclass(frozen=True)
class Ref:
    """Placeholder for a value recorded in the checkpoint by an earlier step."""
    key: str

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class Param:
    """Placeholder for a plan parameter supplied at run time."""
    name: str
    default: Any = _MISSING

    def __str__(self) -> str:
        return f"%{self.name}"


@dataclass(frozen=True)
class RunContext:
    """Explicit run context handed to every step.

    ``values`` is a read-only snapshot of the checkpoint results taken just
    before the step runs.
    """

    environment: str
    client: "ChainClient"
    values: Mapping[str, Any]
    params: Mapping[str, Any] = field(default_factory=dict)
    step_key: str = ""

    def get(self, key: str) -> Any:
        if key not in self.values:
            raise OrderingError(self.step_key or "<unknown>", [key])
        return self.values[key]

    def param(self, name: str, default: Any = _MISSING) -> Any:
        if name in self.params:
            return self.params[name]
        if default is not _MISSING:
            return default
        raise PlanError(f"Step '{self.step_key}' requires missing parameter '{name}'")

    def resolve(self, value: Any) -> Any:
        """Replace ``Ref``/``Param`` placeholders with concrete values.

        A parameter default may itself be a placeholder, e.g. a multisig
        that falls back to ``Param("deployer")``.
        """
        if isinstance(value, Ref):
            return self.get(value.key)
        if isinstance(value, Param):
            return self.resolve(self.param(value.name, value.default))
        return value


@dataclass
class StepOutcome:
    """单个步骤的执行结果"""
    key: str
    label: str
    state: StepState = StepState.PENDING
    value: Any = None
    attempts: int = 0
    error: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "state": self.state.value,
            "value": self.value,
            "attempts": self.attempts,
            "error": self.error,
            "timestamp": self.timestamp,
        }


@dataclass
class RunReport:
    """Result of one plan run."""
    environment: str
    state: RunState = RunState.RUNNING
    outcomes: List[StepOutcome] = field(default_factory=list)
    error: Optional[BaseException] = None
    failed_step: Optional[str] = None
    interrupted: bool = False
    checkpoint_path: Optional[Path] = None
    record_path: Optional[Path] = None

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.COMPLETED

    @property
    def executed(self) -> List[StepOutcome]:
        return [o for o in self.outcomes if o.state is StepState.COMMITTED]

    @property
    def skipped(self) -> List[StepOutcome]:
        return [o for o in self.outcomes if o.state is StepState.SKIPPED]

    @property
    def exit_code(self) -> int:
        if self.state is RunState.COMPLETED:
            return 0
        if self.interrupted:
            return 130
        return 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "environment": self.environment,
            "state": self.state.value,
            "failed_step": self.failed_step,
            "error": str(self.error) if self.error else None,
            "interrupted": self.interrupted,
            "record_path": str(self.record_path) if self.record_path else None,
            "steps": [o.to_dict() for o in self.outcomes],
        }
