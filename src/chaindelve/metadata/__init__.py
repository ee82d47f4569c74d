"""
Contract metadata: explorer client, per-address resolution and caches.
"""

from .cache import FileCache, FetchOnce, FetchState
from .etherscan import (
    AddressInfo,
    CreationInfo,
    EtherscanClient,
    MetadataResolver,
    MetadataSource,
    SourceInfo,
    abis_for,
)

__all__ = [
    "FileCache",
    "FetchOnce",
    "FetchState",
    "AddressInfo",
    "CreationInfo",
    "EtherscanClient",
    "MetadataResolver",
    "MetadataSource",
    "SourceInfo",
    "abis_for",
]
