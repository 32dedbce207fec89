"""Typed function parameters and their ABI encoding."""

from __future__ import annotations

from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from eth_abi import decode, encode
from web3 import Web3


class FunctionParameters:
    """Ordered list of ``(abi_type, value)`` pairs.

    Mirrors the builder style of ledger SDKs::

        FunctionParameters().add_address(admin).add_uint256(delay)

    Values may be placeholders (see ``orchestrator.steps.Ref``) until
    ``resolve`` replaces them with concrete values.
    """

    def __init__(self, pairs: Optional[Iterable[Tuple[str, Any]]] = None) -> None:
        self._pairs: List[Tuple[str, Any]] = []
        for abi_type, value in pairs or ():
            self.add(abi_type, value)

    def add(self, abi_type: str, value: Any) -> "FunctionParameters":
        if not abi_type or not isinstance(abi_type, str):
            raise ValueError(f"Invalid ABI type: {abi_type!r}")
        self._pairs.append((abi_type.strip(), value))
        return self

    def add_address(self, value: Any) -> "FunctionParameters":
        return self.add("address", value)

    def add_address_array(self, values: Any) -> "FunctionParameters":
        return self.add("address[]", values)

    def add_uint256(self, value: Any) -> "FunctionParameters":
        return self.add("uint256", value)

    def add_uint8(self, value: Any) -> "FunctionParameters":
        return self.add("uint8", value)

    def add_int64_array(self, values: Any) -> "FunctionParameters":
        return self.add("int64[]", values)

    def add_bytes32(self, value: Any) -> "FunctionParameters":
        return self.add("bytes32", value)

    def add_bytes(self, value: Any) -> "FunctionParameters":
        return self.add("bytes", value)

    def add_string(self, value: Any) -> "FunctionParameters":
        return self.add("string", value)

    @property
    def types(self) -> List[str]:
        return [abi_type for abi_type, _ in self._pairs]

    @property
    def values(self) -> List[Any]:
        return [value for _, value in self._pairs]

    def resolve(self, resolver: Callable[[Any], Any]) -> "FunctionParameters":
        """Return a copy with every value passed through ``resolver``."""
        return FunctionParameters(
            (abi_type, _map_nested(value, resolver)) for abi_type, value in self._pairs
        )

    def encode(self) -> bytes:
        values = [_coerce(abi_type, value) for abi_type, value in self._pairs]
        return encode(self.types, values)

    def __len__(self) -> int:
        return len(self._pairs)

    def __iter__(self):
        return iter(self._pairs)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FunctionParameters):
            return NotImplemented
        return self._pairs == other._pairs

    def __repr__(self) -> str:
        return f"FunctionParameters({self._pairs!r})"


def function_signature(name: str, args: Optional[FunctionParameters] = None) -> str:
    types = args.types if args is not None else []
    return f"{name}({','.join(types)})"


def function_selector(name: str, args: Optional[FunctionParameters] = None) -> bytes:
    return bytes(Web3.keccak(text=function_signature(name, args))[:4])


def encode_call(name: str, args: Optional[FunctionParameters] = None) -> bytes:
    """Selector followed by the ABI-encoded arguments."""
    payload = args.encode() if args is not None and len(args) else b""
    return function_selector(name, args) + payload


def decode_result(returns: Sequence[str], raw: bytes) -> Any:
    values = decode(list(returns), bytes(raw))
    if len(values) == 1:
        return values[0]
    return tuple(values)


def _map_nested(value: Any, resolver: Callable[[Any], Any]) -> Any:
    if isinstance(value, (list, tuple)):
        return [_map_nested(item, resolver) for item in value]
    return resolver(value)


def _coerce(abi_type: str, value: Any) -> Any:
    # hex strings are accepted for byte types
    if abi_type.endswith("[]") and isinstance(value, (list, tuple)):
        return [_coerce(abi_type[:-2], item) for item in value]
    if abi_type.startswith("bytes") and isinstance(value, str):
        text = value[2:] if value.startswith("0x") else value
        return bytes.fromhex(text)
    if abi_type.startswith(("uint", "int")) and isinstance(value, str):
        return int(value, 0)
    if abi_type == "address" and isinstance(value, str):
        return Web3.to_checksum_address(value)
    return value
