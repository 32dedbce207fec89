"""Durable checkpoint storage."""

from .models import ACTIONS_KEY, Checkpoint
from .store import CheckpointStore, DeploymentRecord

__all__ = [
    "ACTIONS_KEY",
    "Checkpoint",
    "CheckpointStore",
    "DeploymentRecord",
]
