"""
Ledger access: JSON-RPC provider, local fork process and ABI-driven contract calls.
"""

from .rpc import LedgerProvider, EthRpcClient, AnvilManager, ForkConfig
from .contract import (
    AbiFunction,
    AbiParam,
    ContractDescriptor,
    ERC20_METADATA_ABI,
    ZERO_ADDRESS,
    parse_abi,
    probe_erc20,
)

__all__ = [
    "LedgerProvider",
    "EthRpcClient",
    "AnvilManager",
    "ForkConfig",
    "AbiFunction",
    "AbiParam",
    "ContractDescriptor",
    "ERC20_METADATA_ABI",
    "ZERO_ADDRESS",
    "parse_abi",
    "probe_erc20",
]
