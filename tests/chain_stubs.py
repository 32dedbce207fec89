"""Stub collaborators shared by the test modules."""

from typing import Any, Dict, List, Optional, Sequence

from chain_deployer.chain.base import AccountCreation, CallResult, ChainClient, ContractCreation

DEPLOYER = "0x" + "d" * 40


class StubChainClient(ChainClient):
    """Records every remote call; raises queued exceptions per operation name.

    Operation names are the bytecode for creations, the function name for
    calls and queries, and ``create_account`` for new accounts.
    """

    def __init__(self, failures: Optional[Dict[str, List[BaseException]]] = None) -> None:
        self.calls: List[tuple] = []
        self.failures = failures or {}
        self._next_address = 0x111
        self.query_results: Dict[str, Any] = {}
        self.balance = 10_000

    @property
    def account_address(self) -> str:
        return DEPLOYER

    def _maybe_fail(self, name: str) -> None:
        queue = self.failures.get(name)
        if queue:
            raise queue.pop(0)

    def _new_address(self) -> str:
        address = f"0x{self._next_address:040x}"
        self._next_address += 1
        return address

    def create_contract(self, bytecode, constructor_args=None, gas_limit=1_000_000, initial_funds=0):
        self.calls.append(("create", bytecode, constructor_args))
        self._maybe_fail(bytecode)
        self.balance -= 100
        address = self._new_address()
        return ContractCreation(id=address, address=address)

    def call_function(self, target_id, function_name, args=None, gas_limit=200_000, payment=0,
                      returns: Optional[Sequence[str]] = None):
        self.calls.append(("call", function_name, target_id, args))
        self._maybe_fail(function_name)
        self.balance -= 10
        result = self.query_results.get(function_name, "0x" + "f" * 40) if returns else None
        return CallResult(result=result, receipt_status=1)

    def create_account(self, initial_balance=0):
        self.calls.append(("account", initial_balance))
        self._maybe_fail("create_account")
        self.balance -= initial_balance
        return AccountCreation(address=self._new_address(), private_key="0x" + "1" * 64)

    def query_function(self, target_id, function_name, args=None, gas_limit=50_000,
                       returns: Sequence[str] = ("address",)):
        self.calls.append(("query", function_name, target_id, args))
        self._maybe_fail(function_name)
        return self.query_results.get(function_name, "0x" + "e" * 40)

    def get_balance(self):
        return self.balance
