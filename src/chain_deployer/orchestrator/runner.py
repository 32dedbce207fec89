"""Plan runner: executes deployment plans against a checkpoint."""

from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional

from ..checkpoint.models import Checkpoint
from ..errors import OrderingError, PersistenceError, RunInterrupted
from .models import RunContext, RunReport, RunState, StepOutcome, StepState
from .retry import RetryPolicy
from .steps import DeploymentPlan, Step

if TYPE_CHECKING:
    from ..chain.base import ChainClient
    from ..checkpoint.store import CheckpointStore

logger = logging.getLogger(__name__)


class PlanRunner:
    """
    部署计划执行器

    按声明顺序执行每个步骤：已记录的步骤直接跳过，新步骤经由重试策略
    执行，成功后立即写入 checkpoint；失败或中断时先尽力保存再终止。
    """

    def __init__(
        self,
        store: "CheckpointStore",
        client: "ChainClient",
        retry_policy: Optional[RetryPolicy] = None,
        *,
        handle_signals: bool = False,
    ) -> None:
        self.store = store
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self.handle_signals = handle_signals

    def run(
        self,
        plan: DeploymentPlan,
        environment: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        seed: Optional[Checkpoint] = None,
    ) -> RunReport:
        """
        执行部署计划

        Args:
            plan: 部署计划
            environment: 目标网络名称
            params: 覆盖计划默认值的运行参数
            seed: 可选的历史记录，合并到工作 checkpoint 中

        Returns:
            RunReport: 运行报告（COMPLETED 或 ABORTED）
        """
        plan.validate()
        run_params = {**plan.params, **(params or {})}
        report = RunReport(environment=environment)

        checkpoint = self.store.load(environment)
        if seed is not None:
            self._merge_seed(checkpoint, seed)
            report.checkpoint_path = self.store.save(environment, checkpoint)

        self._log_header(plan, environment, checkpoint)

        with self._interrupt_guard():
            try:
                for index, step in enumerate(plan.steps, 1):
                    outcome = StepOutcome(key=step.key, label=step.label)
                    report.outcomes.append(outcome)
                    logger.info(f"📍 Step {index}/{len(plan.steps)}: {step.label}")

                    if step.is_recorded(checkpoint):
                        outcome.state = StepState.SKIPPED
                        outcome.value = step.recorded_value(checkpoint)
                        logger.info(f"   ⏭️ Already recorded: {outcome.value}")
                        continue

                    if not step.is_enabled(run_params):
                        outcome.state = StepState.SKIPPED
                        logger.info(f"   ⏭️ Condition '{step.when}' not set, skipping")
                        continue

                    outcome.state = StepState.EXECUTING
                    try:
                        value = self._execute(step, checkpoint, environment, run_params, outcome)
                        step.record(checkpoint, value)
                        report.checkpoint_path = self.store.save(environment, checkpoint)
                    except Exception as exc:
                        outcome.state = StepState.FAILED
                        outcome.error = str(exc)
                        report.failed_step = step.key
                        self._abort(report, environment, checkpoint, exc)
                        return report

                    outcome.state = StepState.COMMITTED
                    outcome.value = value
                    logger.info(f"   ✅ {step.key}: {value}")

                # 归档同样处于中断保护内：中断时保留工作 checkpoint
                try:
                    report.record_path = self.store.archive(environment, checkpoint)
                except PersistenceError as exc:
                    self._abort(report, environment, checkpoint, exc)
                    return report
            except KeyboardInterrupt as exc:
                report.interrupted = True
                for outcome in report.outcomes:
                    if outcome.state is StepState.EXECUTING:
                        outcome.state = StepState.FAILED
                        outcome.error = "interrupted"
                        report.failed_step = outcome.key
                self._abort(report, environment, checkpoint, exc)
                return report

        report.state = RunState.COMPLETED
        logger.info("=" * 60)
        logger.info(
            f"🎉 Deployment completed: {len(report.executed)} executed, "
            f"{len(report.skipped)} skipped"
        )
        logger.info("=" * 60)
        return report

    def execute_step(
        self,
        step: Step,
        checkpoint: Checkpoint,
        environment: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Run one step outside the plan loop and return its decoded value.

        Raises:
            OrderingError: If a declared dependency is missing
        """
        outcome = StepOutcome(key=step.key, label=step.label)
        return self._execute(step, checkpoint, environment, params or {}, outcome)

    def _execute(
        self,
        step: Step,
        checkpoint: Checkpoint,
        environment: str,
        params: Dict[str, Any],
        outcome: StepOutcome,
    ) -> Any:
        missing = step.missing_dependencies(checkpoint)
        if missing:
            raise OrderingError(step.key, missing)

        ctx = RunContext(
            environment=environment,
            client=self.client,
            values=MappingProxyType(checkpoint.snapshot()),
            params=MappingProxyType(dict(params)),
            step_key=step.key,
        )
        operation = step.run(ctx)

        def attempt() -> Any:
            outcome.attempts += 1
            return operation()

        raw = self.retry_policy.execute(attempt, label=step.label)
        return step.decode(raw)

    def _abort(
        self,
        report: RunReport,
        environment: str,
        checkpoint: Checkpoint,
        error: BaseException,
    ) -> None:
        self._flush(environment, checkpoint, report)
        report.state = RunState.ABORTED
        report.error = error
        if report.interrupted:
            logger.error("   ❌ Run interrupted by operator")
        else:
            logger.error(f"   ❌ Step '{report.failed_step}' failed: {error}")
        logger.error(
            f"   💾 Checkpoint kept at {self.store.path_for(environment)}; "
            f"rerun the same command to resume"
        )

    def _flush(self, environment: str, checkpoint: Checkpoint, report: RunReport) -> None:
        """Best-effort save on failure or interruption."""
        try:
            report.checkpoint_path = self.store.save(environment, checkpoint)
        except PersistenceError as exc:
            logger.error(f"   ⚠️ Could not flush checkpoint: {exc}")

    @contextmanager
    def _interrupt_guard(self) -> Iterator[None]:
        """Translate SIGTERM into ``RunInterrupted`` while the plan runs."""
        if not self.handle_signals or threading.current_thread() is not threading.main_thread():
            yield
            return

        def _on_sigterm(signum, frame):
            raise RunInterrupted(f"received signal {signum}")

        previous = signal.signal(signal.SIGTERM, _on_sigterm)
        try:
            yield
        finally:
            signal.signal(signal.SIGTERM, previous)

    def _merge_seed(self, checkpoint: Checkpoint, seed: Checkpoint) -> None:
        for key, value in seed.results.items():
            checkpoint.results.setdefault(key, value)
        for description in seed.actions:
            checkpoint.record_action(description)

    def _log_header(self, plan: DeploymentPlan, environment: str, checkpoint: Checkpoint) -> None:
        logger.info("")
        logger.info("=" * 60)
        logger.info("🚀 DEPLOYMENT")
        logger.info("=" * 60)
        logger.info(f"Plan: {plan.name}")
        logger.info(f"Network: {environment}")
        logger.info(f"Total Steps: {len(plan.steps)}")
        if not checkpoint.is_empty():
            logger.info(
                f"Continuing from partial deployment "
                f"({len(checkpoint.results)} results, {len(checkpoint.actions)} actions)"
            )
        logger.info("=" * 60)
