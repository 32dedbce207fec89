"""File-backed checkpoint store."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Union

from ..errors import PersistenceError
from ..paths import PARTIAL_SUFFIX, partial_file, record_file, record_glob
from .models import Checkpoint

logger = logging.getLogger(__name__)


@dataclass
class DeploymentRecord:
    """An archived, immutable deployment record on disk."""

    environment: str
    timestamp_ms: int
    path: Path


class CheckpointStore:
    """Persists one checkpoint document per environment.

    Every ``save`` rewrites the whole document through a temp file and an
    atomic rename, so the on-disk copy is always either the previous or the
    new version.
    """

    def __init__(
        self,
        root: Union[str, Path],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.root = Path(root)
        self._clock = clock

    def path_for(self, environment: str) -> Path:
        return partial_file(self.root, environment)

    def load(self, environment: str) -> Checkpoint:
        """Return the working checkpoint, or an empty one if none exists."""
        path = self.path_for(environment)
        if not path.exists():
            return Checkpoint()
        return self._read(path)

    def save(self, environment: str, checkpoint: Checkpoint) -> Path:
        path = self.path_for(environment)
        self._write_atomic(path, checkpoint)
        return path

    def archive(self, environment: str, checkpoint: Checkpoint) -> Path:
        """Write a timestamped record and remove the working copy."""
        timestamp_ms = int(self._clock() * 1000)
        target = record_file(self.root, environment, timestamp_ms)
        while target.exists():
            timestamp_ms += 1
            target = record_file(self.root, environment, timestamp_ms)

        self._write_atomic(target, checkpoint)
        logger.info(f"💾 Saved deployment record to {target}")

        partial = self.path_for(environment)
        try:
            partial.unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceError("Could not remove working checkpoint", str(partial)) from exc
        logger.info(f"🧹 Deleted partial deployment record from {partial}")
        return target

    def list_records(self, environment: Optional[str] = None) -> List[DeploymentRecord]:
        """Archived records, newest first."""
        if not self.root.exists():
            return []
        records: List[DeploymentRecord] = []
        for path in self.root.glob(record_glob(environment or "*")):
            env_name, _, stamp = path.stem.rpartition("@")
            if stamp == PARTIAL_SUFFIX or not stamp.isdigit():
                continue
            records.append(DeploymentRecord(environment=env_name, timestamp_ms=int(stamp), path=path))
        records.sort(key=lambda r: r.timestamp_ms, reverse=True)
        return records

    def load_record(self, path: Union[str, Path]) -> Checkpoint:
        path = Path(path)
        if not path.is_file():
            candidate = self.root / path
            if not candidate.is_file():
                raise PersistenceError("Deployment record not found", str(path))
            path = candidate
        return self._read(path)

    def _read(self, path: Path) -> Checkpoint:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Could not read checkpoint ({exc})", str(path)) from exc
        if not isinstance(data, dict):
            raise PersistenceError("Checkpoint document is not a JSON object", str(path))
        return Checkpoint.from_dict(data)

    def _write_atomic(self, path: Path, checkpoint: Checkpoint) -> None:
        tmp_name: Optional[str] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=path.parent,
                prefix=f".{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_name = f.name
                json.dump(checkpoint.to_dict(), f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as exc:
            raise PersistenceError(f"Could not write checkpoint ({exc})", str(path)) from exc
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
