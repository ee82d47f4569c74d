import copy
import json
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest
from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector
from web3 import Web3

from chaindelve.core.rpc import LedgerProvider
from chaindelve.exceptions import RpcError
from chaindelve.metadata.etherscan import CreationInfo, MetadataSource, SourceInfo


def addr(n: int) -> str:
    return Web3.to_checksum_address(f"0x{n:040x}")


def fn(name: str, outputs: Sequence[Any] = (), inputs: Sequence[str] = (), mutability: str = "view") -> Dict:
    """ABI entry; outputs are types or (name, type) pairs."""
    def params(items):
        return [{"name": p[0], "type": p[1]} if isinstance(p, tuple) else {"name": "", "type": p} for p in items]

    return {
        "type": "function",
        "name": name,
        "inputs": params(inputs),
        "outputs": params(outputs),
        "stateMutability": mutability,
    }


def abi_json(*entries: Dict) -> str:
    return json.dumps(list(entries))


class FakeLedger(LedgerProvider):
    """In-memory ledger answering registered calls, with snapshot support."""

    def __init__(self):
        self.code: Dict[str, bytes] = {}
        self.responses: Dict[tuple, Callable[[], bytes]] = {}
        self.state: Dict[str, Any] = {}
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self.blocks: Dict[str, Dict[str, Any]] = {}
        self.sent: List[Dict[str, Any]] = []
        self.impersonated: List[str] = []
        self.calls: List[tuple] = []
        self.revert_result = True
        self._snapshots: Dict[str, Dict[str, Any]] = {}
        self._next_snapshot = 1

    def add_contract(self, address: str) -> None:
        self.code[address] = b"\x60\x80"

    def on_call(self, address: str, signature: str, output_types: Sequence[str], values: Any,
                arg_types: Sequence[str] = (), args: Sequence[Any] = ()) -> None:
        """Answer ``signature`` at ``address``; ``values`` may be a callable of the ledger state."""
        data = function_signature_to_4byte_selector(signature) + encode(list(arg_types), list(args))

        def respond() -> bytes:
            result = values(self.state) if callable(values) else values
            return encode(list(output_types), list(result))

        self.responses[(address, data)] = respond

    async def get_code(self, address: str) -> bytes:
        return self.code.get(address, b"")

    async def call(self, address: str, data: bytes) -> bytes:
        self.calls.append((address, data))
        respond = self.responses.get((address, data))
        if respond is None:
            raise RpcError("eth_call", {"code": 3, "message": "execution reverted"})
        return respond()

    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        self.sent.append(tx)
        tx_hash = "0x%064x" % len(self.sent)
        self.receipts[tx_hash] = {"gasUsed": "0x5208", "status": "0x1", "blockHash": "0xb1"}
        return tx_hash

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return self.receipts.get(tx_hash)

    async def get_block(self, block_hash: str) -> Optional[Dict[str, Any]]:
        return self.blocks.get(block_hash)

    async def snapshot(self) -> str:
        handle = hex(self._next_snapshot)
        self._next_snapshot += 1
        self._snapshots[handle] = copy.deepcopy(self.state)
        return handle

    async def revert_to(self, handle: str) -> bool:
        if not self.revert_result or handle not in self._snapshots:
            return False
        self.state = self._snapshots.pop(handle)
        return True

    async def impersonate(self, address: str) -> None:
        self.impersonated.append(address)


class FakeMetadataSource(MetadataSource):
    def __init__(self):
        self.sources: Dict[str, SourceInfo] = {}
        self.creations: Dict[str, CreationInfo] = {}
        self.requests: List[str] = []
        self.error: Optional[Exception] = None

    def add(self, address: str, name: str, abi: Optional[str], implementation: Optional[str] = None) -> None:
        self.sources[address] = SourceInfo(
            contract_name=name,
            abi=abi,
            is_proxy=implementation is not None,
            implementation_address=implementation,
        )

    async def get_source_info(self, address: str) -> Optional[SourceInfo]:
        self.requests.append(address)
        if self.error is not None:
            raise self.error
        return self.sources.get(address)

    async def get_creation_info(self, address: str) -> Optional[CreationInfo]:
        return self.creations.get(address)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def metadata():
    return FakeMetadataSource()
