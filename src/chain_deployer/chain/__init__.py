"""Chain client boundary for chain-deployer."""

from .base import AccountCreation, CallResult, ChainClient, ContractCreation, create_chain_client
from .params import FunctionParameters, encode_call, function_signature
from .roles import DEFAULT_ADMIN_ROLE, role_hash

__all__ = [
    "AccountCreation",
    "CallResult",
    "ChainClient",
    "ContractCreation",
    "create_chain_client",
    "FunctionParameters",
    "encode_call",
    "function_signature",
    "DEFAULT_ADMIN_ROLE",
    "role_hash",
]
