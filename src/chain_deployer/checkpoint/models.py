"""Checkpoint data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

# 幂等动作（授权、放弃角色等）记录在该嵌套键下
ACTIONS_KEY = "config"


@dataclass
class Checkpoint:
    """Durable record of committed steps.

    ``results`` maps step keys to recorded values (addresses, identifiers,
    query results). ``actions`` maps idempotent-action descriptions to
    ``True``. A present key means the remote effect is already committed.
    """

    results: Dict[str, Any] = field(default_factory=dict)
    actions: Dict[str, bool] = field(default_factory=dict)

    def has_result(self, key: str) -> bool:
        return key in self.results

    def has_action(self, description: str) -> bool:
        return bool(self.actions.get(description))

    def record_result(self, key: str, value: Any) -> None:
        if key == ACTIONS_KEY:
            raise ValueError(f"'{ACTIONS_KEY}' is reserved for action flags")
        self.results[key] = value

    def record_action(self, description: str) -> None:
        self.actions[description] = True

    def is_empty(self) -> bool:
        return not self.results and not self.actions

    def snapshot(self) -> Dict[str, Any]:
        """Shallow copy of the recorded results."""
        return dict(self.results)

    def to_dict(self) -> Dict[str, Any]:
        """转换为持久化的 JSON 结构"""
        payload: Dict[str, Any] = dict(self.results)
        if self.actions:
            payload[ACTIONS_KEY] = dict(self.actions)
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Checkpoint":
        """从 JSON 结构创建，容忍未知或缺失的键"""
        results = {k: v for k, v in data.items() if k != ACTIONS_KEY}
        raw_actions = data.get(ACTIONS_KEY)
        actions: Dict[str, bool] = {}
        if isinstance(raw_actions, Mapping):
            actions = {str(k): True for k, v in raw_actions.items() if v}
        return cls(results=results, actions=actions)
