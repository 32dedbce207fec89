"""Unified path conventions for chain-deployer.

All deployment state lives under the deployments directory:
- deployments/<network>@partial.json        # working checkpoint
- deployments/<network>@<epoch-millis>.json # archived deployment records
"""

import re
from pathlib import Path

DEFAULT_DEPLOYMENTS_DIR = Path("deployments")
DEFAULT_CONFIG_DIR = Path("config")

PARTIAL_SUFFIX = "partial"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def environment_slug(environment: str) -> str:
    """把网络名转换为安全的文件名片段."""
    slug = _UNSAFE_CHARS.sub("-", environment.strip()).strip("-.")
    if not slug:
        raise ValueError(f"Invalid environment name: {environment!r}")
    return slug


def partial_file(deployments_dir: Path, environment: str) -> Path:
    return deployments_dir / f"{environment_slug(environment)}@{PARTIAL_SUFFIX}.json"


def record_file(deployments_dir: Path, environment: str, timestamp_ms: int) -> Path:
    return deployments_dir / f"{environment_slug(environment)}@{timestamp_ms}.json"


def record_glob(environment: str = "*") -> str:
    slug = environment if environment == "*" else environment_slug(environment)
    return f"{slug}@*.json"
