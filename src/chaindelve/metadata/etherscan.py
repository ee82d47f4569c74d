"""
Contract metadata from a block explorer.

EtherscanClient talks to the Etherscan HTTP API (with an on-disk response
cache). MetadataResolver combines it with the ledger to describe an address
and memoises the description for the lifetime of the process.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from web3 import Web3

from ..core.contract import ZERO_ADDRESS, probe_erc20
from ..core.rpc import LedgerProvider
from ..exceptions import MetadataError
from .cache import FetchOnce, FileCache

logger = logging.getLogger(__name__)

ETHERSCAN_API = "https://api.etherscan.io/v2/api"

# ABI field content for contracts without verified source
UNVERIFIED_ABI = "Contract source code not verified"


@dataclass
class SourceInfo:
    """Verified source metadata of one contract."""
    contract_name: str
    abi: Optional[str]
    is_proxy: bool = False
    implementation_address: Optional[str] = None


@dataclass
class CreationInfo:
    creator: str
    tx_hash: str


@dataclass
class AddressInfo:
    """Everything known about an address before link discovery."""
    address: str
    is_contract: bool
    source: Optional[SourceInfo] = None
    implementation: Optional[SourceInfo] = None
    erc20_name: Optional[str] = None
    erc20_symbol: Optional[str] = None

    @property
    def contract_name(self) -> Optional[str]:
        return self.source.contract_name if self.source and self.source.contract_name else None

    @property
    def implementation_address(self) -> Optional[str]:
        if self.source and self.source.is_proxy and self.source.implementation_address:
            return self.source.implementation_address
        return None

    @property
    def implementation_name(self) -> Optional[str]:
        return self.implementation.contract_name if self.implementation else None


class MetadataSource(ABC):
    """Block explorer lookups used during discovery."""

    @abstractmethod
    async def get_source_info(self, address: str) -> Optional[SourceInfo]:
        pass

    @abstractmethod
    async def get_creation_info(self, address: str) -> Optional[CreationInfo]:
        pass


class RateLimiter:
    """Spaces out requests by a minimum delay."""

    def __init__(self, min_delay: float = 0.25):
        self.min_delay = min_delay
        self.last_call = 0.0
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            elapsed = time.monotonic() - self.last_call
            if elapsed < self.min_delay:
                await asyncio.sleep(self.min_delay - elapsed)
            self.last_call = time.monotonic()


class EtherscanClient(MetadataSource):
    """
    Etherscan HTTP API client.

    Successful responses are cached on disk keyed by the request (without the
    api key), so repeated runs only hit the network for new addresses.
    """

    def __init__(
        self,
        api_key: str,
        cache: Optional[FileCache] = None,
        base_url: str = ETHERSCAN_API,
        chain_id: int = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        min_delay: float = 0.25,
    ):
        self.api_key = api_key
        self.cache = cache
        self.base_url = base_url
        self.chain_id = chain_id
        self._transport = transport
        self._limiter = RateLimiter(min_delay)

    async def _fetch(self, request: Dict[str, str]) -> Optional[Any]:
        params = {"chainid": str(self.chain_id), **request}
        key = "&".join(f"{k}={v}" for k, v in sorted(params.items()))
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("metadata cache hit: %s", key)
                return cached

        await self._limiter.wait()
        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.get(self.base_url, params={**params, "apikey": self.api_key})
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise MetadataError(f"explorer request failed ({request.get('action')}): {e}", request.get("address"))

        result = data.get("result")
        if data.get("status") == "1" and str(data.get("message", "")).startswith("OK"):
            if self.cache is not None:
                self.cache.put(key, result)
            return result

        # status 0 covers both "nothing known" and genuine service failures
        text = str(result)
        if "rate limit" in text.lower() or "api key" in text.lower():
            raise MetadataError(f"explorer refused request: {text}", request.get("address"))
        return None

    async def get_source_info(self, address: str) -> Optional[SourceInfo]:
        result = await self._fetch({
            "module": "contract",
            "action": "getsourcecode",
            "address": address,
        })
        if not result or not isinstance(result, list):
            return None

        entry = result[0]
        abi = entry.get("ABI") or None
        if abi == UNVERIFIED_ABI:
            abi = None
        implementation = entry.get("Implementation") or None
        if implementation and Web3.is_address(implementation):
            implementation = Web3.to_checksum_address(implementation)
        return SourceInfo(
            contract_name=(entry.get("ContractName") or "").strip(),
            abi=abi,
            is_proxy=str(entry.get("Proxy", "0")) not in ("0", ""),
            implementation_address=implementation,
        )

    async def get_creation_info(self, address: str) -> Optional[CreationInfo]:
        result = await self._fetch({
            "module": "contract",
            "action": "getcontractcreation",
            "contractaddresses": address,
        })
        if not result or not isinstance(result, list):
            return None

        entry = result[0]
        return CreationInfo(creator=entry.get("contractCreator", ""), tx_hash=entry.get("txHash", ""))


class MetadataResolver:
    """
    Describes addresses using the ledger and a metadata source.

    Each address is resolved at most once per process; re-queued addresses
    get the cached description (or the cached failure).
    """

    def __init__(self, source: MetadataSource, provider: LedgerProvider):
        self.source = source
        self.provider = provider
        self._infos: Dict[str, FetchOnce[AddressInfo]] = {}
        self._creations: Dict[str, FetchOnce[Optional[Dict[str, Any]]]] = {}

    async def resolve(self, address: str) -> AddressInfo:
        entry = self._infos.get(address)
        if entry is None:
            entry = FetchOnce(lambda: self._resolve(address))
            self._infos[address] = entry
        return await entry.get()

    async def _resolve(self, address: str) -> AddressInfo:
        info = AddressInfo(address=address, is_contract=False)
        if address == ZERO_ADDRESS:
            return info

        code = await self.provider.get_code(address)
        if not code:
            return info

        info.is_contract = True
        info.source = await self.source.get_source_info(address)
        info.erc20_name, info.erc20_symbol = await probe_erc20(address, self.provider)

        implementation = info.implementation_address
        if implementation:
            logger.info("%s is a proxy for %s", address, implementation)
            info.implementation = await self.source.get_source_info(implementation)
        return info

    async def creation(self, address: str) -> Optional[Dict[str, Any]]:
        """Creator and creation timestamp of a contract, None if unknown."""
        entry = self._creations.get(address)
        if entry is None:
            entry = FetchOnce(lambda: self._creation(address))
            self._creations[address] = entry
        return await entry.get()

    async def _creation(self, address: str) -> Optional[Dict[str, Any]]:
        info = await self.source.get_creation_info(address)
        if info is None:
            return None

        timestamp = None
        if info.tx_hash:
            receipt = await self.provider.get_transaction_receipt(info.tx_hash)
            if receipt and receipt.get("blockHash"):
                block = await self.provider.get_block(receipt["blockHash"])
                if block and block.get("timestamp") is not None:
                    timestamp = int(block["timestamp"], 16) if isinstance(block["timestamp"], str) else block["timestamp"]
        return {"creator": info.creator, "tx_hash": info.tx_hash, "timestamp": timestamp}


def abis_for(info: AddressInfo) -> List[Optional[str]]:
    """The ABIs used for link discovery: implementation first, then the proxy's own."""
    result = []
    if info.implementation and info.implementation.abi:
        result.append(info.implementation.abi)
    if info.source and info.source.abi:
        result.append(info.source.abi)
    return result
