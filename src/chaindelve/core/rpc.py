"""
Ledger access: the provider interface, a JSON-RPC client and a local fork manager.

The fork is an anvil instance forked from a remote endpoint. It exposes the
standard Ethereum JSON-RPC plus the ``evm_snapshot``/``evm_revert`` and
``anvil_impersonateAccount`` extensions used for action sequencing.
"""

import asyncio
import logging
import os
import shutil
import signal
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp

from ..exceptions import RpcError

logger = logging.getLogger(__name__)


def _to_bytes(hex_data: Optional[str]) -> bytes:
    if not hex_data or hex_data == "0x":
        return b""
    return bytes.fromhex(hex_data[2:] if hex_data.startswith("0x") else hex_data)


class LedgerProvider(ABC):
    """Read, transact and snapshot operations against a ledger."""

    @abstractmethod
    async def get_code(self, address: str) -> bytes:
        pass

    @abstractmethod
    async def call(self, address: str, data: bytes) -> bytes:
        """Execute a read-only call and return the raw return data."""

    @abstractmethod
    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        """Submit a transaction and return its hash."""

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_block(self, block_hash: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def snapshot(self) -> str:
        pass

    @abstractmethod
    async def revert_to(self, handle: str) -> bool:
        pass

    async def impersonate(self, address: str) -> None:
        """Allow transactions from ``address`` without its key (forks only)."""
        return None


class EthRpcClient(LedgerProvider):
    """
    Simple async Ethereum JSON-RPC client.

    Used against a local fork or any node that supports the snapshot extensions.
    """

    def __init__(self, rpc_url: str, timeout: float = 60.0):
        """
        Initialize RPC client.

        Args:
            rpc_url: RPC endpoint URL
            timeout: Per-request timeout in seconds
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._request_id = 0

    async def _call(self, method: str, params: list = None) -> Any:
        """Make an RPC call."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.rpc_url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                result = await response.json(content_type=None)
                if "error" in result:
                    raise RpcError(method, result["error"])
                return result.get("result")

    async def client_version(self) -> str:
        return await self._call("web3_clientVersion")

    async def block_number(self) -> int:
        return int(await self._call("eth_blockNumber"), 16)

    async def get_code(self, address: str) -> bytes:
        return _to_bytes(await self._call("eth_getCode", [address, "latest"]))

    async def call(self, address: str, data: bytes) -> bytes:
        result = await self._call("eth_call", [{"to": address, "data": "0x" + data.hex()}, "latest"])
        return _to_bytes(result)

    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        return await self._call("eth_sendTransaction", [tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self._call("eth_getTransactionReceipt", [tx_hash])

    async def get_block(self, block_hash: str) -> Optional[Dict[str, Any]]:
        return await self._call("eth_getBlockByHash", [block_hash, False])

    async def snapshot(self) -> str:
        return await self._call("evm_snapshot")

    async def revert_to(self, handle: str) -> bool:
        return bool(await self._call("evm_revert", [handle]))

    async def impersonate(self, address: str) -> None:
        await self._call("anvil_impersonateAccount", [address])


@dataclass
class ForkConfig:
    """Configuration for a local fork instance."""
    fork_url: Optional[str] = None
    fork_block: Optional[int] = None
    rpc_port: int = 8545
    # Start the fork process ourselves, otherwise connect to an existing one
    spawn: bool = False
    extra_args: List[str] = field(default_factory=list)


class AnvilManager:
    """
    Manages the anvil fork process lifecycle.

    anvil is started as a subprocess and provides a standard JSON-RPC
    endpoint for calls, transactions and snapshots.
    """

    def __init__(self, config: Optional[ForkConfig] = None):
        self.config = config or ForkConfig()
        self._process: Optional[subprocess.Popen] = None
        self._started = False

    @property
    def rpc_url(self) -> str:
        """Get the RPC URL for this fork."""
        return f"http://127.0.0.1:{self.config.rpc_port}"

    def _find_anvil_binary(self) -> str:
        """Find the anvil binary in PATH or the foundry install location."""
        binary = shutil.which("anvil")
        if binary:
            return binary

        candidate = Path.home() / ".foundry" / "bin" / "anvil"
        if candidate.exists():
            return str(candidate)

        raise RuntimeError("anvil binary not found. Install foundry: https://getfoundry.sh")

    def _build_command(self) -> List[str]:
        """Build the anvil start command."""
        cmd = [self._find_anvil_binary(), "--port", str(self.config.rpc_port)]

        if self.config.fork_url:
            cmd.extend(["--fork-url", self.config.fork_url])
            if self.config.fork_block is not None:
                cmd.extend(["--fork-block-number", str(self.config.fork_block)])

        cmd.extend(self.config.extra_args)
        return cmd

    async def start(self, timeout: float = 120.0) -> None:
        """
        Start the fork when configured to spawn it.

        Raises:
            RuntimeError: If anvil fails to start
        """
        if self._started or not self.config.spawn:
            return

        cmd = self._build_command()
        # the fork url usually embeds an api key, keep it out of the log
        logger.info("starting anvil on port %d (block %s)", self.config.rpc_port, self.config.fork_block or "latest")

        self._process = subprocess.Popen(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            preexec_fn=os.setsid if os.name != "nt" else None,
        )

        start_time = time.time()
        while time.time() - start_time < timeout:
            if self._process.poll() is not None:
                stderr = self._process.stderr.read().decode() if self._process.stderr else ""
                raise RuntimeError(f"anvil exited unexpectedly. stderr: {stderr}")

            if await self._check_rpc_ready():
                self._started = True
                logger.info("fork ready at %s", self.rpc_url)
                return

            await asyncio.sleep(0.5)

        self.stop()
        raise RuntimeError(f"anvil failed to start within {timeout}s")

    async def _check_rpc_ready(self) -> bool:
        """Check if the RPC endpoint is responding."""
        try:
            await EthRpcClient(self.rpc_url, timeout=2).client_version()
            return True
        except (aiohttp.ClientError, asyncio.TimeoutError, RpcError):
            return False

    def stop(self) -> None:
        """Stop the fork process."""
        if not self._process:
            return

        try:
            if self._process.poll() is not None:
                return

            if os.name != "nt":
                try:
                    os.killpg(os.getpgid(self._process.pid), signal.SIGTERM)
                except (ProcessLookupError, OSError):
                    pass  # already gone
            else:
                self._process.terminate()

            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                if os.name != "nt":
                    try:
                        os.killpg(os.getpgid(self._process.pid), signal.SIGKILL)
                    except (ProcessLookupError, OSError):
                        pass
                else:
                    self._process.kill()
        finally:
            self._process = None
            self._started = False

    async def __aenter__(self) -> "AnvilManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
