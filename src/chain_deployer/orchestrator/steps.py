"""Step abstraction and the factories used to declare deployment plans."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..chain.base import AccountCreation, CallResult, ContractCreation
from ..chain.params import FunctionParameters
from ..chain.roles import role_hash
from ..checkpoint.models import ACTIONS_KEY, Checkpoint
from ..errors import PlanError, RemoteRejectedError
from .models import Param, Ref, RunContext

Operation = Callable[[], Any]
Target = Union[str, Ref, Param]


class StepKind(Enum):
    """步骤类型"""
    VALUE = "value"     # 产出地址/标识符，按步骤键幂等
    ACTION = "action"   # 只产出完成标记，按动作描述幂等


def _identity(value: Any) -> Any:
    return value


@dataclass
class Step:
    """A named unit of work.

    ``run`` receives the run context and returns a zero-argument operation
    that performs the remote call; ``decode`` turns the raw result into the
    value recorded in the checkpoint. For action steps ``key`` is the
    action description.
    """

    key: str
    kind: StepKind
    run: Callable[[RunContext], Operation]
    decode: Callable[[Any], Any] = _identity
    depends_on: Tuple[str, ...] = ()
    label: str = ""
    when: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.key:
            raise PlanError("Step key must not be empty")
        if not self.label:
            self.label = self.key
        self.depends_on = tuple(dict.fromkeys(self.depends_on))

    @property
    def is_action(self) -> bool:
        return self.kind is StepKind.ACTION

    def is_recorded(self, checkpoint: Checkpoint) -> bool:
        if self.is_action:
            return checkpoint.has_action(self.key)
        return checkpoint.has_result(self.key)

    def recorded_value(self, checkpoint: Checkpoint) -> Any:
        if self.is_action:
            return checkpoint.has_action(self.key)
        return checkpoint.results.get(self.key)

    def record(self, checkpoint: Checkpoint, value: Any) -> None:
        if self.is_action:
            checkpoint.record_action(self.key)
        else:
            checkpoint.record_result(self.key, value)

    def missing_dependencies(self, checkpoint: Checkpoint) -> List[str]:
        return [key for key in self.depends_on if not checkpoint.has_result(key)]

    def is_enabled(self, params: Dict[str, Any]) -> bool:
        if self.when is None:
            return True
        return _truthy(params.get(self.when))


@dataclass
class DeploymentPlan:
    """Ordered list of steps plus default parameters."""

    name: str
    steps: List[Step] = field(default_factory=list)
    params: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        """
        Reject structurally invalid plans before anything is executed.

        Raises:
            PlanError: On duplicate keys, duplicate action descriptions or a
                value step using the reserved ``config`` key
        """
        seen_values: set = set()
        seen_actions: set = set()
        for step in self.steps:
            if step.is_action:
                if step.key in seen_actions:
                    raise PlanError(f"Duplicate action description: '{step.key}'")
                seen_actions.add(step.key)
                continue
            if step.key == ACTIONS_KEY:
                raise PlanError(f"'{ACTIONS_KEY}' is reserved and cannot be a step key")
            if step.key in seen_values:
                raise PlanError(f"Duplicate step key: '{step.key}'")
            seen_values.add(step.key)

    def __len__(self) -> int:
        return len(self.steps)


# ---------------------------------------------------------------------------
# 创建类步骤
# ---------------------------------------------------------------------------

def create_contract(
    key: str,
    bytecode: str,
    args: Optional[FunctionParameters] = None,
    *,
    gas: int = 1_000_000,
    initial_funds: Union[int, Param] = 0,
    existing: Optional[Param] = None,
    depends_on: Iterable[str] = (),
    when: Optional[str] = None,
) -> Step:
    """Deploy a contract and record its address under ``key``.

    When ``existing`` names a parameter that is set, its value is recorded
    instead and no contract is created.
    """
    constructor_args = args or FunctionParameters()

    def run(ctx: RunContext) -> Operation:
        if existing is not None:
            preset_value = ctx.param(existing.name, None)
            if preset_value:
                return lambda: preset_value
        resolved = constructor_args.resolve(ctx.resolve)
        funds = int(ctx.resolve(initial_funds))
        return lambda: ctx.client.create_contract(bytecode, resolved, gas, funds)

    return Step(
        key=key,
        kind=StepKind.VALUE,
        run=run,
        decode=_decode_address,
        depends_on=_dependencies(depends_on, constructor_args.values),
        label=f"Deploy {key}",
        when=when,
    )


def query(
    key: str,
    target: Target,
    function: str,
    args: Optional[FunctionParameters] = None,
    *,
    returns: Sequence[str] = ("address",),
    gas: int = 50_000,
    depends_on: Iterable[str] = (),
    when: Optional[str] = None,
) -> Step:
    """Record the result of a read-only call under ``key``."""
    call_args = args or FunctionParameters()

    def run(ctx: RunContext) -> Operation:
        target_id = ctx.resolve(target)
        resolved = call_args.resolve(ctx.resolve)
        return lambda: ctx.client.query_function(target_id, function, resolved, gas, tuple(returns))

    return Step(
        key=key,
        kind=StepKind.VALUE,
        run=run,
        decode=_decode_query,
        depends_on=_dependencies(depends_on, [target], call_args.values),
        label=f"Query {_label(target)}.{function}",
        when=when,
    )


def preset(
    key: str,
    value: Any,
    *,
    depends_on: Iterable[str] = (),
    when: Optional[str] = None,
) -> Step:
    """Record an externally supplied value (no remote call)."""

    def run(ctx: RunContext) -> Operation:
        resolved = ctx.resolve(value)
        if resolved is None or resolved == "":
            raise PlanError(f"Preset '{key}' resolved to an empty value")
        return lambda: resolved

    return Step(
        key=key,
        kind=StepKind.VALUE,
        run=run,
        depends_on=_dependencies(depends_on, [value]),
        label=f"Preset {key}",
        when=when,
    )


def create_account(
    key: str,
    initial_balance: Union[int, Param] = 0,
    *,
    existing: Optional[Param] = None,
    depends_on: Iterable[str] = (),
    when: Optional[str] = None,
) -> Step:
    """Create and fund a fresh account, recording its address under ``key``.

    When ``existing`` names a parameter that is set, that address is recorded
    and no account is created.
    """

    def run(ctx: RunContext) -> Operation:
        if existing is not None:
            preset_value = ctx.param(existing.name, None)
            if preset_value:
                return lambda: preset_value
        balance = int(ctx.resolve(initial_balance))
        return lambda: ctx.client.create_account(balance)

    return Step(
        key=key,
        kind=StepKind.VALUE,
        run=run,
        decode=_decode_address,
        depends_on=_dependencies(depends_on),
        label=f"Create account {key}",
        when=when,
    )


def transact(
    key: str,
    target: Target,
    function: str,
    args: Optional[FunctionParameters] = None,
    *,
    returns: Sequence[str] = ("address",),
    gas: int = 200_000,
    payment: Union[int, Param] = 0,
    depends_on: Iterable[str] = (),
    when: Optional[str] = None,
) -> Step:
    """Submit a state-changing call and record its return value under ``key``.

    Used for factory-style functions such as ``createPair`` whose result only
    exists once the transaction has been mined.
    """
    call_args = args or FunctionParameters()

    def run(ctx: RunContext) -> Operation:
        target_id = ctx.resolve(target)
        resolved = call_args.resolve(ctx.resolve)
        value = int(ctx.resolve(payment))
        return lambda: ctx.client.call_function(
            target_id, function, resolved, gas, value, tuple(returns)
        )

    return Step(
        key=key,
        kind=StepKind.VALUE,
        run=run,
        decode=_decode_transact,
        depends_on=_dependencies(depends_on, [target], call_args.values),
        label=f"Call {_label(target)}.{function}",
        when=when,
    )


# ---------------------------------------------------------------------------
# 幂等动作步骤
# ---------------------------------------------------------------------------

def call(
    target: Target,
    function: str,
    args: Optional[FunctionParameters] = None,
    *,
    gas: int = 200_000,
    payment: Union[int, Param] = 0,
    description: Optional[str] = None,
    depends_on: Iterable[str] = (),
    when: Optional[str] = None,
) -> Step:
    """A state-changing call tracked by its description."""
    call_args = args or FunctionParameters()
    description = description or f"Call {function} on {_label(target)}"

    def run(ctx: RunContext) -> Operation:
        target_id = ctx.resolve(target)
        resolved = call_args.resolve(ctx.resolve)
        value = int(ctx.resolve(payment))
        return lambda: ctx.client.call_function(target_id, function, resolved, gas, value)

    return Step(
        key=description,
        kind=StepKind.ACTION,
        run=run,
        decode=_decode_action,
        depends_on=_dependencies(depends_on, [target], call_args.values),
        label=description,
        when=when,
    )


def grant_role(
    target: Target,
    role: str,
    account: Target,
    *,
    gas: int = 200_000,
    description: Optional[str] = None,
    depends_on: Iterable[str] = (),
    when: Optional[str] = None,
) -> Step:
    description = description or (
        f"Grant {role} to {_label(account)} on {_label(target)}"
    )
    args = FunctionParameters().add_bytes32(role_hash(role)).add_address(account)
    return call(
        target, "grantRole", args,
        gas=gas, description=description, depends_on=depends_on, when=when,
    )


def renounce_role(
    target: Target,
    role: str,
    account: Target,
    *,
    gas: int = 200_000,
    description: Optional[str] = None,
    depends_on: Iterable[str] = (),
    when: Optional[str] = None,
) -> Step:
    description = description or (
        f"Renounce {role} from {_label(account)} on {_label(target)}"
    )
    args = FunctionParameters().add_bytes32(role_hash(role)).add_address(account)
    return call(
        target, "renounceRole", args,
        gas=gas, description=description, depends_on=depends_on, when=when,
    )


def queue_transaction(
    timelock: Target,
    target: Target,
    signature: str,
    args: Optional[FunctionParameters] = None,
    *,
    delay: Union[int, Param] = 0,
    value: Union[int, Param] = 0,
    margin: int = 60,
    gas: int = 1_000_000,
    description: Optional[str] = None,
    depends_on: Iterable[str] = (),
    when: Optional[str] = None,
    clock: Callable[[], float] = time.time,
) -> Step:
    """Queue ``signature(args)`` on ``target`` through a Compound-style timelock.

    The eta is ``now + delay + margin`` seconds, computed when the step runs.
    Executing the queued transaction after the delay is left to governance.
    """
    call_args = args or FunctionParameters()
    description = description or f"Queue {signature} on {_label(target)} via {_label(timelock)}"

    def run(ctx: RunContext) -> Operation:
        timelock_id = ctx.resolve(timelock)
        data = call_args.resolve(ctx.resolve).encode()
        eta = math.ceil(clock()) + int(ctx.resolve(delay)) + margin
        queued = (
            FunctionParameters()
            .add_address(ctx.resolve(target))
            .add_uint256(int(ctx.resolve(value)))
            .add_string(signature)
            .add_bytes(data)
            .add_uint256(eta)
        )
        return lambda: ctx.client.call_function(timelock_id, "queueTransaction", queued, gas, 0)

    return Step(
        key=description,
        kind=StepKind.ACTION,
        run=run,
        decode=_decode_action,
        depends_on=_dependencies(depends_on, [timelock, target], call_args.values),
        label=description,
        when=when,
    )


def approve(target: Target, *, gas: int = 900_000, description: Optional[str] = None,
            depends_on: Iterable[str] = (), when: Optional[str] = None) -> Step:
    return call(
        target, "approve", gas=gas,
        description=description or f"Approve {_label(target)}",
        depends_on=depends_on, when=when,
    )


def pause(target: Target, *, gas: int = 32_000, description: Optional[str] = None,
          depends_on: Iterable[str] = (), when: Optional[str] = None) -> Step:
    return call(
        target, "pause", gas=gas,
        description=description or f"Pause {_label(target)}",
        depends_on=depends_on, when=when,
    )


def unpause(target: Target, *, gas: int = 32_000, description: Optional[str] = None,
            depends_on: Iterable[str] = (), when: Optional[str] = None) -> Step:
    return call(
        target, "unpause", gas=gas,
        description=description or f"Unpause {_label(target)}",
        depends_on=depends_on, when=when,
    )


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

def _decode_address(raw: Any) -> Any:
    if isinstance(raw, (ContractCreation, AccountCreation)):
        return raw.address
    return raw


def _decode_transact(raw: Any) -> Any:
    if isinstance(raw, CallResult):
        if not raw.ok:
            raise RemoteRejectedError(f"Receipt status {raw.receipt_status}")
        raw = raw.result
    return _decode_query(raw)


def _decode_query(raw: Any) -> Any:
    if isinstance(raw, bytes):
        return "0x" + raw.hex()
    if isinstance(raw, tuple):
        return list(raw)
    return raw


def _decode_action(raw: Any) -> bool:
    if isinstance(raw, CallResult) and not raw.ok:
        raise RemoteRejectedError(f"Receipt status {raw.receipt_status}")
    return True


def _label(value: Any) -> str:
    return str(value)


def _dependencies(explicit: Iterable[str], *groups: Iterable[Any]) -> Tuple[str, ...]:
    keys: List[str] = list(explicit)
    for group in groups:
        for value in group:
            keys.extend(_refs_in(value))
    return tuple(dict.fromkeys(keys))


def _refs_in(value: Any) -> List[str]:
    if isinstance(value, Ref):
        return [value.key]
    if isinstance(value, (list, tuple)):
        found: List[str] = []
        for item in value:
            found.extend(_refs_in(item))
        return found
    return []


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)
