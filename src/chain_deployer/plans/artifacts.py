"""Compiled contract artifact lookup (Hardhat layout)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Union

from ..errors import PlanError


class ArtifactStore:
    """Finds contract bytecode in ``<root>/**/<Name>.json`` artifacts."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root)
        self._cache: Dict[str, str] = {}

    def bytecode(self, name: str) -> str:
        if name in self._cache:
            return self._cache[name]

        path = self._locate(name)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PlanError(f"Could not read artifact {path}: {exc}") from exc

        bytecode = data.get("bytecode") if isinstance(data, dict) else None
        # Hardhat 用 "0x" 表示接口/抽象合约（无字节码）
        if not isinstance(bytecode, str) or bytecode in ("", "0x"):
            raise PlanError(f"Artifact {path} has no deployable bytecode")
        if not bytecode.startswith("0x"):
            bytecode = "0x" + bytecode

        self._cache[name] = bytecode
        return bytecode

    def _locate(self, name: str) -> Path:
        direct = Path(name)
        if direct.suffix == ".json" and direct.is_file():
            return direct

        if not self.root.exists():
            raise PlanError(f"Artifacts directory not found: {self.root}")
        matches = [
            p for p in self.root.rglob(f"{name}.json")
            if not p.name.endswith(".dbg.json")
        ]
        if not matches:
            raise PlanError(f"No artifact named '{name}' under {self.root}")
        if len(matches) > 1:
            listing = ", ".join(str(p) for p in sorted(matches))
            raise PlanError(f"Artifact name '{name}' is ambiguous: {listing}")
        return matches[0]
