"""Declarative deployment plans."""

from .artifacts import ArtifactStore
from .loader import load_plan, plan_from_dict

__all__ = [
    "ArtifactStore",
    "load_plan",
    "plan_from_dict",
]
