"""Load declarative JSON deployment plans.

A plan file looks like::

    {
      "name": "core",
      "params": {"TIMELOCK_DELAY": 172800},
      "steps": [
        {"create": "Timelock", "artifact": "Timelock",
         "args": [["address", {"param": "deployer"}], ["uint256", {"param": "TIMELOCK_DELAY"}]],
         "gas": 100000},
        {"grant_role": "FUNDER_ROLE", "target": {"ref": "PangoChef"}, "account": {"ref": "Multisig"}}
      ]
    }

``{"ref": key}`` reads a value recorded by an earlier step and
``{"param": name}`` reads a run parameter.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..chain.params import FunctionParameters
from ..errors import PlanError
from ..orchestrator.models import Param, Ref
from ..orchestrator.steps import (
    DeploymentPlan,
    Step,
    approve,
    call,
    create_account,
    create_contract,
    grant_role,
    pause,
    preset,
    query,
    queue_transaction,
    renounce_role,
    transact,
    unpause,
)
from .artifacts import ArtifactStore


def load_plan(path: Union[str, Path], artifacts: Optional[ArtifactStore] = None) -> DeploymentPlan:
    """
    Read a plan file and build its steps.

    Args:
        path: Plan JSON file
        artifacts: Where ``artifact`` names are resolved to bytecode

    Raises:
        PlanError: If the file is unreadable or a step is malformed
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise PlanError(f"Could not read plan {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise PlanError(f"Plan {path} must be a JSON object")
    return plan_from_dict(data, artifacts, default_name=path.stem)


def plan_from_dict(
    data: Dict[str, Any],
    artifacts: Optional[ArtifactStore] = None,
    *,
    default_name: str = "plan",
) -> DeploymentPlan:
    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise PlanError("Plan must declare a non-empty 'steps' list")

    steps: List[Step] = []
    for index, raw in enumerate(raw_steps, 1):
        if not isinstance(raw, dict):
            raise PlanError(f"Step #{index} must be an object")
        try:
            steps.append(_build_step(raw, artifacts))
        except PlanError as exc:
            raise PlanError(f"Step #{index}: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise PlanError(f"Step #{index}: invalid definition ({exc})") from exc

    plan = DeploymentPlan(
        name=str(data.get("name") or default_name),
        steps=steps,
        params=dict(data.get("params") or {}),
    )
    plan.validate()
    return plan


def _build_step(raw: Dict[str, Any], artifacts: Optional[ArtifactStore]) -> Step:
    kinds = [k for k in _BUILDERS if k in raw]
    if len(kinds) != 1:
        raise PlanError(
            f"expected exactly one of {', '.join(_BUILDERS)}; got {', '.join(kinds) or 'none'}"
        )
    kind = kinds[0]
    return _BUILDERS[kind](raw, artifacts)


def _common(raw: Dict[str, Any]) -> Dict[str, Any]:
    options: Dict[str, Any] = {}
    if "depends_on" in raw:
        options["depends_on"] = tuple(raw["depends_on"])
    if "when" in raw:
        options["when"] = str(raw["when"])
    return options


def _create(raw: Dict[str, Any], artifacts: Optional[ArtifactStore]) -> Step:
    if "bytecode" in raw:
        bytecode = str(raw["bytecode"])
    elif "artifact" in raw:
        if artifacts is None:
            raise PlanError("artifact given but no artifacts directory configured")
        bytecode = artifacts.bytecode(str(raw["artifact"]))
    else:
        raise PlanError("create step needs 'artifact' or 'bytecode'")

    existing = raw.get("existing_param")
    return create_contract(
        str(raw["create"]),
        bytecode,
        _parse_args(raw.get("args")),
        gas=int(raw.get("gas", 1_000_000)),
        initial_funds=_parse_value(raw.get("initial_funds", 0)),
        existing=Param(str(existing)) if existing else None,
        **_common(raw),
    )


def _query(raw: Dict[str, Any], artifacts: Optional[ArtifactStore]) -> Step:
    returns = raw.get("returns", ["address"])
    if isinstance(returns, str):
        returns = [returns]
    return query(
        str(raw["query"]),
        _parse_value(raw["target"]),
        str(raw["function"]),
        _parse_args(raw.get("args")),
        returns=tuple(returns),
        gas=int(raw.get("gas", 50_000)),
        **_common(raw),
    )


def _preset(raw: Dict[str, Any], artifacts: Optional[ArtifactStore]) -> Step:
    return preset(str(raw["preset"]), _parse_value(raw["value"]), **_common(raw))


def _create_account(raw: Dict[str, Any], artifacts: Optional[ArtifactStore]) -> Step:
    existing = raw.get("existing_param")
    return create_account(
        str(raw["create_account"]),
        _parse_value(raw.get("initial_balance", 0)),
        existing=Param(str(existing)) if existing else None,
        **_common(raw),
    )


def _transact(raw: Dict[str, Any], artifacts: Optional[ArtifactStore]) -> Step:
    returns = raw.get("returns", ["address"])
    if isinstance(returns, str):
        returns = [returns]
    return transact(
        str(raw["transact"]),
        _parse_value(raw["target"]),
        str(raw["function"]),
        _parse_args(raw.get("args")),
        returns=tuple(returns),
        gas=int(raw.get("gas", 200_000)),
        payment=_parse_value(raw.get("payment", 0)),
        **_common(raw),
    )


def _queue_transaction(raw: Dict[str, Any], artifacts: Optional[ArtifactStore]) -> Step:
    return queue_transaction(
        _parse_value(raw["timelock"]),
        _parse_value(raw["target"]),
        str(raw["queue_transaction"]),
        _parse_args(raw.get("args")),
        delay=_parse_value(raw.get("delay", 0)),
        value=_parse_value(raw.get("value", 0)),
        margin=int(raw.get("margin", 60)),
        gas=int(raw.get("gas", 1_000_000)),
        description=raw.get("description"),
        **_common(raw),
    )


def _call(raw: Dict[str, Any], artifacts: Optional[ArtifactStore]) -> Step:
    return call(
        _parse_value(raw["target"]),
        str(raw["call"]),
        _parse_args(raw.get("args")),
        gas=int(raw.get("gas", 200_000)),
        payment=_parse_value(raw.get("payment", 0)),
        description=raw.get("description"),
        **_common(raw),
    )


def _role_step(factory: Callable[..., Step], field_name: str) -> Callable[..., Step]:
    def build(raw: Dict[str, Any], artifacts: Optional[ArtifactStore]) -> Step:
        return factory(
            _parse_value(raw["target"]),
            str(raw[field_name]),
            _parse_value(raw["account"]),
            gas=int(raw.get("gas", 200_000)),
            description=raw.get("description"),
            **_common(raw),
        )
    return build


def _target_step(factory: Callable[..., Step], field_name: str, default_gas: int) -> Callable[..., Step]:
    def build(raw: Dict[str, Any], artifacts: Optional[ArtifactStore]) -> Step:
        return factory(
            _parse_value(raw[field_name]),
            gas=int(raw.get("gas", default_gas)),
            description=raw.get("description"),
            **_common(raw),
        )
    return build


_BUILDERS: Dict[str, Callable[[Dict[str, Any], Optional[ArtifactStore]], Step]] = {
    "create": _create,
    "query": _query,
    "preset": _preset,
    "create_account": _create_account,
    "transact": _transact,
    "call": _call,
    "queue_transaction": _queue_transaction,
    "grant_role": _role_step(grant_role, "grant_role"),
    "renounce_role": _role_step(renounce_role, "renounce_role"),
    "approve": _target_step(approve, "approve", 900_000),
    "pause": _target_step(pause, "pause", 32_000),
    "unpause": _target_step(unpause, "unpause", 32_000),
}


def _parse_value(value: Any) -> Any:
    if isinstance(value, dict):
        if "ref" in value:
            return Ref(str(value["ref"]))
        if "param" in value:
            if "default" in value:
                return Param(str(value["param"]), _parse_value(value["default"]))
            return Param(str(value["param"]))
        raise PlanError(f"Unsupported value object: {value}")
    if isinstance(value, list):
        return [_parse_value(item) for item in value]
    return value


def _parse_args(raw_args: Any) -> FunctionParameters:
    params = FunctionParameters()
    if raw_args is None:
        return params
    if not isinstance(raw_args, list):
        raise PlanError("'args' must be a list of [type, value] pairs")
    for pair in raw_args:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise PlanError(f"Invalid argument {pair!r}; expected [type, value]")
        params.add(str(pair[0]), _parse_value(pair[1]))
    return params
