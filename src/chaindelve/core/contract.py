"""
Contract descriptors built from JSON ABIs.

A descriptor lists the parameterless read functions of a contract, calls
them through a LedgerProvider and decodes the results with eth_abi.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector
from web3 import Web3

from .rpc import LedgerProvider

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# The minimal interface used to probe for ERC20 metadata
ERC20_METADATA_ABI = [
    {
        "type": "function",
        "name": "name",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "symbol",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
    },
]


def _canonical_type(param: Dict[str, Any]) -> str:
    """Expand tuple components so the type can be used in a signature."""
    abi_type = param.get("type", "")
    if abi_type.startswith("tuple"):
        inner = ",".join(_canonical_type(c) for c in param.get("components", []))
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


@dataclass
class AbiParam:
    name: str
    type: str
    canonical_type: str


@dataclass
class AbiFunction:
    """One function entry of a contract ABI."""
    name: str
    inputs: List[AbiParam] = field(default_factory=list)
    outputs: List[AbiParam] = field(default_factory=list)
    state_mutability: str = "nonpayable"

    @classmethod
    def from_abi(cls, entry: Dict[str, Any]) -> "AbiFunction":
        def params(items):
            return [AbiParam(p.get("name", ""), p.get("type", ""), _canonical_type(p)) for p in items or []]

        mutability = entry.get("stateMutability")
        if mutability is None:
            # pre-0.5 ABIs only carry the constant flag
            mutability = "view" if entry.get("constant") else "nonpayable"

        return cls(
            name=entry["name"],
            inputs=params(entry.get("inputs")),
            outputs=params(entry.get("outputs")),
            state_mutability=mutability,
        )

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(p.canonical_type for p in self.inputs)})"

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)

    @property
    def is_read(self) -> bool:
        return self.state_mutability in ("view", "pure")

    @property
    def output_types(self) -> List[str]:
        return [p.canonical_type for p in self.outputs]

    def output_name(self, output_index: Optional[int] = None, array_index: Optional[int] = None) -> str:
        """Name a single output: ``fn``, ``fn.out``, ``fn[2]`` or ``fn.out[2]``."""
        result = self.name
        if output_index is not None:
            output = self.outputs[output_index].name
            result = f"{result}.{output if output else output_index}"
        if array_index is not None:
            result = f"{result}[{array_index}]"
        return result


def parse_abi(abi: Union[str, Sequence[Dict[str, Any]], None]) -> List[AbiFunction]:
    """Parse the function entries of an ABI given as JSON text or a list."""
    if not abi:
        return []
    if isinstance(abi, str):
        abi = json.loads(abi)
    return [AbiFunction.from_abi(entry) for entry in abi if entry.get("type", "function") == "function"]


def normalise_value(value: Any) -> Any:
    """Convert decoded ABI values into plain python scalars, lists and checksummed addresses."""
    if isinstance(value, (list, tuple)):
        return [normalise_value(v) for v in value]
    if isinstance(value, bytes):
        return "0x" + value.hex()
    if isinstance(value, str) and Web3.is_address(value) and value.startswith("0x"):
        return Web3.to_checksum_address(value)
    return value


def coerce_arg(value: Any, abi_type: str) -> Any:
    """Coerce a configured argument into the python type eth_abi expects."""
    if abi_type.endswith("[]") and isinstance(value, (list, tuple)):
        return [coerce_arg(v, abi_type[:-2]) for v in value]
    if abi_type.startswith(("uint", "int")) and isinstance(value, str):
        return int(value, 0)
    if abi_type == "bool" and isinstance(value, str):
        return value.lower() in ("1", "true", "yes")
    if abi_type == "address" and isinstance(value, str):
        return Web3.to_checksum_address(value)
    return value


class ContractDescriptor:
    """Calls and decodes the functions of one contract ABI at an address."""

    def __init__(self, address: str, functions: List[AbiFunction], provider: LedgerProvider):
        self.address = address
        self.functions = functions
        self.provider = provider

    @classmethod
    def from_abi(cls, address: str, abi: Union[str, Sequence[Dict[str, Any]], None],
                 provider: LedgerProvider) -> "ContractDescriptor":
        return cls(address, parse_abi(abi), provider)

    def merged_with(self, other: Optional["ContractDescriptor"]) -> "ContractDescriptor":
        """Add the functions of ``other`` that this descriptor does not already have."""
        if other is None:
            return self
        known = {f.signature for f in self.functions}
        extra = [f for f in other.functions if f.signature not in known]
        return ContractDescriptor(self.address, self.functions + extra, self.provider)

    def get_function(self, name: str, arg_count: Optional[int] = None) -> AbiFunction:
        for func in self.functions:
            if func.name == name and (arg_count is None or len(func.inputs) == arg_count):
                return func
        raise KeyError(f"{name} not found in ABI of {self.address}")

    def list_zero_arg_read_functions(self) -> List[AbiFunction]:
        """All view/pure functions that take no inputs."""
        return [f for f in self.functions if f.is_read and not f.inputs]

    def list_address_arg_read_functions(self) -> List[AbiFunction]:
        """All view/pure functions that take a single address input."""
        return [
            f for f in self.functions
            if f.is_read and len(f.inputs) == 1 and f.inputs[0].type == "address"
        ]

    async def call_function(self, func: AbiFunction, *args: Any) -> Tuple[Any, ...]:
        """Call ``func`` and return its decoded outputs as a tuple."""
        coerced = [coerce_arg(a, p.canonical_type) for a, p in zip(args, func.inputs)]
        data = func.selector + encode([p.canonical_type for p in func.inputs], coerced)
        raw = await self.provider.call(self.address, data)
        if not raw and func.outputs:
            raise ValueError(f"empty return data from {self.address} {func.signature}")
        return tuple(normalise_value(v) for v in decode(func.output_types, raw))

    async def call(self, name: str, *args: Any) -> Tuple[Any, ...]:
        return await self.call_function(self.get_function(name, len(args)), *args)

    def encode_transaction(self, name: str, args: Sequence[Any]) -> bytes:
        func = self.get_function(name, len(args))
        coerced = [coerce_arg(a, p.canonical_type) for a, p in zip(args, func.inputs)]
        return func.selector + encode([p.canonical_type for p in func.inputs], coerced)


async def probe_erc20(address: str, provider: LedgerProvider) -> Tuple[Optional[str], Optional[str]]:
    """Return (name, symbol); absent fields are None rather than errors."""
    descriptor = ContractDescriptor.from_abi(address, ERC20_METADATA_ABI, provider)
    found = []
    for function in ("name", "symbol"):
        try:
            found.append((await descriptor.call(function))[0])
        except Exception:
            # not an ERC20, or a non-standard one
            found.append(None)
    return found[0], found[1]
