"""Orchestrator module for resumable deployment plans.

- PlanRunner: Executes a DeploymentPlan against a checkpoint store
- RetryPolicy: Bounded re-attempts for transient remote failures
- Step/DeploymentPlan: Declarative units of work and their ordering
- RunContext/RunReport: Explicit run state passed to steps and returned
"""

from .models import (
    Param,
    Ref,
    RunContext,
    RunReport,
    RunState,
    StepOutcome,
    StepState,
)
from .retry import FailureKind, RetryAttempt, RetryPolicy, default_classifier
from .runner import PlanRunner
from .steps import (
    DeploymentPlan,
    Step,
    StepKind,
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

__all__ = [
    "Param",
    "Ref",
    "RunContext",
    "RunReport",
    "RunState",
    "StepOutcome",
    "StepState",
    "FailureKind",
    "RetryAttempt",
    "RetryPolicy",
    "default_classifier",
    "PlanRunner",
    "DeploymentPlan",
    "Step",
    "StepKind",
    "approve",
    "call",
    "create_account",
    "create_contract",
    "grant_role",
    "pause",
    "preset",
    "query",
    "queue_transaction",
    "renounce_role",
    "transact",
    "unpause",
]
