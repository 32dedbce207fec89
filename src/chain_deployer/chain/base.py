"""Chain client interface consumed by the orchestrator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Sequence

if TYPE_CHECKING:
    from ..config import AppConfig
    from .params import FunctionParameters


@dataclass(frozen=True)
class ContractCreation:
    """Result of a contract creation transaction."""

    id: str
    address: str
    tx_hash: Optional[str] = None


@dataclass(frozen=True)
class CallResult:
    """Result of a state-changing function call."""

    result: Any
    receipt_status: int
    tx_hash: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.receipt_status == 1


@dataclass(frozen=True)
class AccountCreation:
    """Result of creating (and optionally funding) a new account."""

    address: str
    private_key: str
    tx_hash: Optional[str] = None


class ChainClient(ABC):
    """Abstract boundary through which every remote side effect happens.

    Implementations raise ``TransientChainError`` for retryable failures and
    ``RemoteRejectedError`` when the ledger refuses an operation.
    """

    @property
    @abstractmethod
    def account_address(self) -> str:
        """Address of the operator account paying for transactions."""

    @abstractmethod
    def create_contract(
        self,
        bytecode: str,
        constructor_args: Optional["FunctionParameters"] = None,
        gas_limit: int = 1_000_000,
        initial_funds: int = 0,
    ) -> ContractCreation:
        """Deploy ``bytecode`` and return the new contract identifier."""

    @abstractmethod
    def call_function(
        self,
        target_id: str,
        function_name: str,
        args: Optional["FunctionParameters"] = None,
        gas_limit: int = 200_000,
        payment: int = 0,
        returns: Optional[Sequence[str]] = None,
    ) -> CallResult:
        """Submit a state-changing call and wait for its receipt.

        When ``returns`` is given, ``CallResult.result`` holds the decoded
        return value of the call.
        """

    @abstractmethod
    def create_account(self, initial_balance: int = 0) -> AccountCreation:
        """Create a new account and fund it with ``initial_balance``."""

    @abstractmethod
    def query_function(
        self,
        target_id: str,
        function_name: str,
        args: Optional["FunctionParameters"] = None,
        gas_limit: int = 50_000,
        returns: Sequence[str] = ("address",),
    ) -> Any:
        """Run a read-only call and return the decoded value."""

    def get_balance(self) -> Optional[int]:
        """Balance of the operator account, if the client can report it."""
        return None


def create_chain_client(config: "AppConfig", network: str) -> ChainClient:
    """
    Build the chain client for ``network`` from the application config.

    Raises:
        ConfigError: If the network has no RPC URL or no private key is set
    """
    from .web3_client import Web3ChainClient

    return Web3ChainClient.from_config(config, network)
