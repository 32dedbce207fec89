"""EVM chain client built on web3.py."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional, Sequence, Tuple

import requests
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

from ..errors import ConfigError, RemoteRejectedError, TransientChainError
from .base import AccountCreation, CallResult, ChainClient, ContractCreation
from .params import FunctionParameters, decode_result, encode_call

if TYPE_CHECKING:
    from ..config import AppConfig, NetworkConfig

logger = logging.getLogger(__name__)

TRANSFER_GAS = 21_000


@contextmanager
def _classified_errors(action: str) -> Iterator[None]:
    """Translate web3/requests failures into the chain error taxonomy."""
    try:
        yield
    except (TransientChainError, RemoteRejectedError):
        raise
    except TimeExhausted as exc:
        raise TransientChainError(f"{action}: receipt not available in time ({exc})") from exc
    except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
        raise TransientChainError(f"{action}: network error ({exc})") from exc
    except (ConnectionError, TimeoutError) as exc:
        raise TransientChainError(f"{action}: network error ({exc})") from exc
    except ContractLogicError as exc:
        raise RemoteRejectedError(f"{action}: reverted ({exc})") from exc
    except (Web3Exception, ValueError) as exc:
        # JSON-RPC 错误（余额不足、nonce 错误等）均视为被远端拒绝
        raise RemoteRejectedError(f"{action}: rejected ({exc})") from exc


@dataclass
class _PendingTransaction:
    """A signed transaction whose receipt has not been observed yet."""
    nonce: int
    raw: bytes
    tx_hash: Any
    simulated: Any = None


class Web3ChainClient(ChainClient):
    """Signs and submits legacy transactions from a single operator key.

    A transaction that was signed but whose receipt was never seen (receipt
    timeout, dropped connection) is remembered. Submitting the same request
    again waits on the original hash, or re-broadcasts the original signed
    bytes with the original nonce, so at most one of them can be mined.
    """

    def __init__(
        self,
        w3: Web3,
        private_key: str,
        *,
        chain_id: Optional[int] = None,
        gas_price: Optional[int] = None,
        receipt_timeout: int = 120,
    ) -> None:
        self.w3 = w3
        self._account = w3.eth.account.from_key(private_key)
        self._chain_id = chain_id
        self.gas_price = gas_price
        self.receipt_timeout = receipt_timeout
        self._pending: Dict[Tuple, _PendingTransaction] = {}
        self._new_account = None

    @classmethod
    def from_config(cls, config: "AppConfig", network: str) -> "Web3ChainClient":
        """
        Build a client for ``network``.

        No request is sent here: connectivity problems surface on the first
        remote call as ``TransientChainError``.
        """
        network_config: NetworkConfig = config.network(network)
        if not network_config.rpc_url:
            raise ConfigError(
                f"No RPC URL configured for network '{network}'. "
                f"Set networks.{network}.rpc_url or CHAIN_DEPLOYER_{network.upper()}_RPC_URL"
            )
        if not config.deployment.private_key:
            raise ConfigError("CHAIN_DEPLOYER_PRIVATE_KEY must be set")

        w3 = Web3(Web3.HTTPProvider(network_config.rpc_url))
        if network_config.poa:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        logger.info(f"Using {network} at {network_config.rpc_url}")

        return cls(
            w3,
            config.deployment.private_key,
            chain_id=network_config.chain_id,
            gas_price=network_config.gas_price,
            receipt_timeout=network_config.receipt_timeout,
        )

    @property
    def account_address(self) -> str:
        return self._account.address

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            with _classified_errors("chain_id"):
                self._chain_id = int(self.w3.eth.chain_id)
        return self._chain_id

    def create_contract(
        self,
        bytecode: str,
        constructor_args: Optional[FunctionParameters] = None,
        gas_limit: int = 1_000_000,
        initial_funds: int = 0,
    ) -> ContractCreation:
        code = bytecode[2:] if bytecode.startswith("0x") else bytecode
        data = bytes.fromhex(code)
        if constructor_args is not None and len(constructor_args):
            data += constructor_args.encode()

        receipt, _ = self._transact(
            "create contract",
            {"data": data, "gas": gas_limit, "value": initial_funds},
        )
        address = receipt.get("contractAddress")
        if not address:
            raise RemoteRejectedError("create contract: receipt has no contract address")
        return ContractCreation(id=address, address=address, tx_hash=_hex(receipt.get("transactionHash")))

    def call_function(
        self,
        target_id: str,
        function_name: str,
        args: Optional[FunctionParameters] = None,
        gas_limit: int = 200_000,
        payment: int = 0,
        returns: Optional[Sequence[str]] = None,
    ) -> CallResult:
        """
        Submit a call. With ``returns`` the call is first simulated with
        ``eth_call`` and the decoded return value is reported as the result.
        """
        tx = {
            "to": Web3.to_checksum_address(target_id),
            "data": encode_call(function_name, args),
            "gas": gas_limit,
            "value": payment,
        }
        receipt, simulated = self._transact(f"call {function_name}", tx, returns=returns)
        return CallResult(
            result=simulated if returns else receipt,
            receipt_status=int(receipt.get("status", 0)),
            tx_hash=_hex(receipt.get("transactionHash")),
        )

    def query_function(
        self,
        target_id: str,
        function_name: str,
        args: Optional[FunctionParameters] = None,
        gas_limit: int = 50_000,
        returns: Sequence[str] = ("address",),
    ) -> Any:
        call = {
            "from": self.account_address,
            "to": Web3.to_checksum_address(target_id),
            "data": encode_call(function_name, args),
            "gas": gas_limit,
        }
        with _classified_errors(f"query {function_name}"):
            raw = self.w3.eth.call(call)
        return decode_result(returns, raw)

    def create_account(self, initial_balance: int = 0) -> AccountCreation:
        """
        Generate a new key pair and fund it from the operator account.

        The generated account is kept until funding succeeds, so a retried
        call funds the same address instead of creating another one.
        """
        if self._new_account is None:
            self._new_account = self.w3.eth.account.create()
            # 与原部署脚本一致：私钥只输出一次，由操作员自行保存
            logger.warning(
                f"   🔑 Created account {self._new_account.address} "
                f"with private key 0x{bytes(self._new_account.key).hex()}"
            )
        account = self._new_account

        tx_hash = None
        if initial_balance > 0:
            try:
                receipt, _ = self._transact(
                    "fund account",
                    {"to": account.address, "data": b"", "gas": TRANSFER_GAS, "value": initial_balance},
                )
            except RemoteRejectedError:
                self._new_account = None
                raise
            tx_hash = _hex(receipt.get("transactionHash"))

        self._new_account = None
        return AccountCreation(
            address=account.address,
            private_key="0x" + bytes(account.key).hex(),
            tx_hash=tx_hash,
        )

    def get_balance(self) -> Optional[int]:
        with _classified_errors("get balance"):
            return int(self.w3.eth.get_balance(self.account_address))

    def _transact(
        self,
        action: str,
        tx: dict,
        returns: Optional[Sequence[str]] = None,
    ) -> Tuple[Any, Any]:
        key = _fingerprint(tx)
        try:
            with _classified_errors(action):
                pending = self._pending.get(key)
                if pending is None:
                    pending = self._sign(tx, returns)
                    self._pending[key] = pending
                    self._broadcast(action, pending)
                elif self._is_known(pending.tx_hash):
                    logger.info(f"   ⏳ {action}: waiting again for {_hex(pending.tx_hash)}")
                else:
                    logger.warning(
                        f"   📡 {action}: re-broadcasting {_hex(pending.tx_hash)} "
                        f"with nonce {pending.nonce}"
                    )
                    self._broadcast(action, pending)

                receipt = self.w3.eth.wait_for_transaction_receipt(
                    pending.tx_hash, timeout=self.receipt_timeout
                )
        except RemoteRejectedError:
            self._pending.pop(key, None)
            raise

        del self._pending[key]
        if int(receipt.get("status", 0)) != 1:
            raise RemoteRejectedError(f"{action}: transaction {_hex(pending.tx_hash)} reverted")
        return receipt, pending.simulated

    def _sign(self, tx: dict, returns: Optional[Sequence[str]]) -> _PendingTransaction:
        tx = {
            **tx,
            "from": self.account_address,
            "nonce": self.w3.eth.get_transaction_count(self.account_address, "pending"),
            "chainId": self.chain_id,
            "gasPrice": self.gas_price if self.gas_price is not None else self.w3.eth.gas_price,
        }
        simulated = None
        if returns:
            call = {k: tx[k] for k in ("from", "to", "data", "value", "gas")}
            simulated = decode_result(returns, self.w3.eth.call(call))
        signed = self._account.sign_transaction(tx)
        return _PendingTransaction(
            nonce=tx["nonce"],
            raw=bytes(signed.raw_transaction),
            tx_hash=signed.hash,
            simulated=simulated,
        )

    def _broadcast(self, action: str, pending: _PendingTransaction) -> None:
        tx_hash = self.w3.eth.send_raw_transaction(pending.raw)
        if tx_hash:
            pending.tx_hash = tx_hash
        logger.debug(f"   {action}: submitted {_hex(pending.tx_hash)} (nonce {pending.nonce})")

    def _is_known(self, tx_hash: Any) -> bool:
        try:
            self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return False
        return True


def _fingerprint(tx: dict) -> Tuple:
    return (tx.get("to"), bytes(tx.get("data", b"")), tx.get("value", 0), tx.get("gas"))


def _hex(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)
