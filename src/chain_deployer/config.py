"""Configuration loading utilities for chain-deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .paths import DEFAULT_CONFIG_DIR, DEFAULT_DEPLOYMENTS_DIR

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "default_config.json"

# 内置网络默认配置：当配置文件未声明该网络时使用
NETWORK_DEFAULTS = {
    "localhost": {
        "rpc_url": "http://127.0.0.1:8545",
        "chain_id": 31337,
    },
    "testnet": {
        "rpc_url": None,  # 必须由用户指定
        "chain_id": None,
    },
    "mainnet": {
        "rpc_url": None,
        "chain_id": None,
    },
}


@dataclass
class NetworkConfig:
    """Connection settings for one target network."""

    rpc_url: Optional[str] = None
    chain_id: Optional[int] = None
    poa: bool = False                 # 是否注入 POA extraData 中间件
    gas_price: Optional[int] = None   # None 表示使用节点报价
    receipt_timeout: int = 120        # 等待交易回执的超时（秒）


@dataclass
class RetryConfig:
    """Retry policy for remote operations."""

    max_attempts: int = 2             # 总尝试次数（含首次）
    backoff_base: float = 0.0         # 0 表示不等待
    backoff_max: float = 30.0


@dataclass
class DeploymentConfig:
    """Settings related to checkpoint and artifact storage."""

    deployments_dir: str = str(DEFAULT_DEPLOYMENTS_DIR)
    artifacts_dir: str = "artifacts"
    private_key: Optional[str] = None


@dataclass
class AppConfig:
    """Top-level configuration."""

    networks: Dict[str, NetworkConfig] = field(default_factory=dict)
    retry: RetryConfig = field(default_factory=RetryConfig)
    deployment: DeploymentConfig = field(default_factory=DeploymentConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        networks_payload = payload.get("networks", {}) or {}
        retry_payload = payload.get("retry", {}) or {}
        deployment_payload = payload.get("deployment", {}) or {}

        # 过滤掉以下划线开头的注释字段
        retry_payload = {k: v for k, v in retry_payload.items() if not k.startswith("_")}
        deployment_payload = {
            k: v for k, v in deployment_payload.items() if not k.startswith("_")
        }

        networks = {}
        for name, network_payload in networks_payload.items():
            if name.startswith("_"):
                continue
            networks[name] = NetworkConfig(
                **{**NetworkConfig().__dict__, **(network_payload or {})}
            )

        return cls(
            networks=networks,
            retry=RetryConfig(**{**RetryConfig().__dict__, **retry_payload}),
            deployment=DeploymentConfig(
                **{**DeploymentConfig().__dict__, **deployment_payload}
            ),
        )

    def network(self, name: str) -> NetworkConfig:
        """Return settings for ``name``, falling back to built-in defaults.

        ``CHAIN_DEPLOYER_<NAME>_RPC_URL`` (or the generic
        ``CHAIN_DEPLOYER_RPC_URL``) overrides the configured RPC URL.
        """
        if name in self.networks:
            network = self.networks[name]
        else:
            defaults = NETWORK_DEFAULTS.get(name, {})
            network = NetworkConfig(**{**NetworkConfig().__dict__, **defaults})
            self.networks[name] = network

        env_name = f"CHAIN_DEPLOYER_{name.upper().replace('-', '_')}_RPC_URL"
        env_rpc = os.getenv(env_name) or os.getenv("CHAIN_DEPLOYER_RPC_URL")
        if env_rpc:
            network.rpc_url = env_rpc
        return network


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    Environment variables (higher priority than config file):
    - CHAIN_DEPLOYER_PRIVATE_KEY: Operator private key
    - CHAIN_DEPLOYER_RPC_URL / CHAIN_DEPLOYER_<NETWORK>_RPC_URL: RPC endpoint
    - CHAIN_DEPLOYER_MAX_ATTEMPTS: Retry attempts per remote operation
    - CHAIN_DEPLOYER_DEPLOYMENTS_DIR: Checkpoint and record directory

    An explicit ``path`` that does not exist raises ``FileNotFoundError``;
    without one, built-in defaults are used when no default file exists.
    """

    if path and not Path(path).is_file():
        raise FileNotFoundError(f"Could not find configuration file: {path}")

    candidate = Path(path) if path else _DEFAULT_CONFIG_PATH
    if candidate.is_file():
        with candidate.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        config = AppConfig.from_dict(data)
    else:
        config = AppConfig()

    env_key = os.getenv("CHAIN_DEPLOYER_PRIVATE_KEY")
    if env_key:
        config.deployment.private_key = env_key

    env_attempts = os.getenv("CHAIN_DEPLOYER_MAX_ATTEMPTS")
    if env_attempts:
        config.retry.max_attempts = int(env_attempts)

    env_dir = os.getenv("CHAIN_DEPLOYER_DEPLOYMENTS_DIR")
    if env_dir:
        config.deployment.deployments_dir = env_dir

    if config.retry.max_attempts < 1:
        raise ValueError("retry.max_attempts must be at least 1")

    return config
