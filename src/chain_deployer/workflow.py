"""High-level deployment workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .chain.base import ChainClient, create_chain_client
from .checkpoint import Checkpoint, CheckpointStore
from .config import AppConfig
from .orchestrator import PlanRunner, RetryPolicy, RunReport
from .plans import ArtifactStore, load_plan
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DeploymentRequest:
    """User-provided deployment request captured from the CLI."""

    plan_path: str
    network: str
    params: Dict[str, Any] = field(default_factory=dict)
    resume_from: Optional[str] = None  # 历史记录文件，用于续跑已完成的部署


class DeploymentWorkflow:
    """Wires config, chain client, checkpoint store and plan runner together."""

    def __init__(
        self,
        config: AppConfig,
        *,
        client_factory: Optional[Callable[[AppConfig, str], ChainClient]] = None,
        store: Optional[CheckpointStore] = None,
        handle_signals: bool = True,
    ) -> None:
        self.config = config
        self.client_factory = client_factory or create_chain_client
        self.store = store or CheckpointStore(Path(config.deployment.deployments_dir))
        self.artifacts = ArtifactStore(Path(config.deployment.artifacts_dir))
        self.handle_signals = handle_signals

    def run_deploy(self, request: DeploymentRequest) -> RunReport:
        """Run the plan for ``request.network`` and return the run report."""
        logger.info(f"📦 Preparing deployment of {request.plan_path} on {request.network}")
        plan = load_plan(request.plan_path, self.artifacts)

        seed: Optional[Checkpoint] = None
        if request.resume_from:
            seed = self.store.load_record(request.resume_from)
            logger.info(f"📂 Seeding checkpoint from record {request.resume_from}")

        client = self.client_factory(self.config, request.network)
        params = {"deployer": client.account_address, **request.params}
        logger.info(f"👤 Deployer: {client.account_address}")

        balance_before = self._balance(client)

        runner = PlanRunner(
            store=self.store,
            client=client,
            retry_policy=RetryPolicy.from_config(self.config.retry),
            handle_signals=self.handle_signals,
        )
        report = runner.run(plan, request.network, params, seed=seed)

        balance_after = self._balance(client)
        if balance_before is not None and balance_after is not None:
            logger.info(f"💰 Deployment cost: {balance_before - balance_after} wei")
        return report

    def _balance(self, client: ChainClient) -> Optional[int]:
        try:
            return client.get_balance()
        except Exception as exc:
            logger.warning(f"⚠️ Failed to query operator balance: {exc}")
            return None
