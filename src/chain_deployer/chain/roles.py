"""Access-control role identifiers."""

from __future__ import annotations

from web3 import Web3

DEFAULT_ADMIN_ROLE = "0x" + "00" * 32

# 常用角色名称（与合约中的 bytes32 常量一致）
KNOWN_ROLES = (
    "DEFAULT_ADMIN_ROLE",
    "FUNDER_ROLE",
    "MINTER_ROLE",
    "POOL_MANAGER_ROLE",
    "HARVEST_ROLE",
    "PAUSE_ROLE",
    "RECOVERY_ROLE",
    "GOVERNOR_ROLE",
)


def normalize_role_name(name: str) -> str:
    """``FUNDER`` -> ``FUNDER_ROLE``; ``DEFAULT_ADMIN`` -> ``DEFAULT_ADMIN_ROLE``."""
    name = name.strip().upper()
    if name.startswith("0X"):
        return name.lower()
    return name if name.endswith("_ROLE") else f"{name}_ROLE"


def role_hash(name: str) -> str:
    """Return the bytes32 role identifier as a 0x-prefixed hex string.

    A raw 32-byte hex value is passed through unchanged.
    """
    normalized = normalize_role_name(name)
    if normalized.startswith("0x"):
        if len(normalized) != 66:
            raise ValueError(f"Role hash must be 32 bytes: {name}")
        return normalized
    if normalized == "DEFAULT_ADMIN_ROLE":
        return DEFAULT_ADMIN_ROLE
    return "0x" + Web3.keccak(text=normalized).hex().removeprefix("0x")
