"""
Ledger snapshots and isolated action runs.

Every action in a sequence runs against the same base state: the ledger is
reverted to the pre-sequence snapshot after each action except the last.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import aiohttp

from ..analysis.graph import GraphContext, normalise_address
from ..core.rpc import LedgerProvider
from ..exceptions import ConfigError, RpcError, SnapshotError, error_message
from ..measure.models import ActionSummary, MeasurementSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmittedTransaction:
    """Returned by an action that sent a transaction."""
    tx_hash: str


@dataclass
class Action:
    label: str
    invoke: Callable[[], Awaitable[Any]]


@dataclass
class ActionOutcome:
    """The result of one action and the measurements taken after it."""
    label: str
    measurements: MeasurementSet
    error: Optional[str] = None
    gas_used: Optional[int] = None
    value: Any = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def summary(self) -> ActionSummary:
        return ActionSummary(label=self.label, error=self.error, gas_used=self.gas_used, value=self.value)


class Snapshotter:
    """Holds one ledger snapshot and restores it on demand."""

    def __init__(self, provider: LedgerProvider):
        self.provider = provider
        self.handle: Optional[str] = None

    async def take(self) -> str:
        try:
            self.handle = await self.provider.snapshot()
        except (RpcError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SnapshotError(f"snapshot failed: {error_message(e)}") from e
        logger.debug("took snapshot %s", self.handle)
        return self.handle

    async def restore(self) -> None:
        """
        Revert to the held snapshot and take a fresh one.

        A snapshot can only be reverted to once, so it is replaced after use.

        Raises:
            SnapshotError: If there is no snapshot or the revert fails
        """
        if self.handle is None:
            raise SnapshotError("no snapshot to restore")
        try:
            reverted = await self.provider.revert_to(self.handle)
        except (RpcError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SnapshotError(f"revert failed: {error_message(e)}", self.handle) from e
        if not reverted:
            raise SnapshotError("revert rejected", self.handle)
        logger.debug("reverted to snapshot %s", self.handle)
        await self.take()


class ActionRunner:
    """Runs actions one at a time, measuring after each."""

    def __init__(self, provider: LedgerProvider, receipt_timeout: float = 120.0, poll_interval: float = 0.5):
        self.provider = provider
        self.snapshotter = Snapshotter(provider)
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval

    async def run_sequence(
        self,
        base_measure: Callable[[], Awaitable[MeasurementSet]],
        actions: Sequence[Action],
    ) -> List[ActionOutcome]:
        """
        Run each action against the base state and measure its effect.

        Args:
            base_measure: Takes the measurements of the current ledger state
            actions: Actions in order

        Returns:
            One outcome per action, in order

        Raises:
            SnapshotError: If the ledger cannot be snapshotted or restored
        """
        outcomes: List[ActionOutcome] = []
        if not actions:
            return outcomes

        await self.snapshotter.take()
        for index, action in enumerate(actions):
            error, gas_used, value = await self._invoke(action)
            if error:
                logger.warning("%s failed: %s", action.label, error)
            else:
                logger.info("%s done (gas %s)", action.label, gas_used if gas_used is not None else "-")

            measurements = await base_measure()
            outcome = ActionOutcome(action.label, measurements, error, gas_used, value)
            outcome.measurements = measurements.with_summary(outcome.summary)
            outcomes.append(outcome)

            if index < len(actions) - 1:
                await self.snapshotter.restore()

        return outcomes

    async def _invoke(self, action: Action) -> Tuple[Optional[str], Optional[int], Any]:
        try:
            result = await action.invoke()
            if isinstance(result, SubmittedTransaction):
                return await self._await_gas(result.tx_hash)
            return None, None, result
        except Exception as e:
            return error_message(e), None, None

    async def _await_gas(self, tx_hash: str) -> Tuple[Optional[str], Optional[int], Any]:
        receipt = await self.wait_for_receipt(tx_hash)
        gas_used = receipt.get("gasUsed")
        if isinstance(gas_used, str):
            gas_used = int(gas_used, 16)
        status = receipt.get("status")
        if isinstance(status, str):
            status = int(status, 16)
        if status == 0:
            return "transaction reverted", gas_used, None
        return None, gas_used, None

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        deadline = time.monotonic() + self.receipt_timeout
        while True:
            receipt = await self.provider.get_transaction_receipt(tx_hash)
            if receipt is not None:
                return receipt
            if time.monotonic() > deadline:
                raise TimeoutError(f"no receipt for {tx_hash} after {self.receipt_timeout}s")
            await asyncio.sleep(self.poll_interval)


def resolve_arg(value: Any, context: GraphContext, users: Dict[str, str]) -> Any:
    """Replace node and user labels by their addresses."""
    if isinstance(value, list):
        return [resolve_arg(v, context, users) for v in value]
    if isinstance(value, str):
        node = context.by_name(value)
        if node is not None:
            return node.address
        if value in users:
            return users[value]
    return value


def actions_from_config(
    entries: Sequence[Dict[str, Any]],
    context: GraphContext,
    users: Dict[str, str],
    provider: LedgerProvider,
) -> List[Action]:
    """
    Build actions from configuration entries.

    Each entry names a contract node, a function, the user sending the
    transaction and its arguments.

    Raises:
        ConfigError: If a contract or user cannot be resolved
    """
    actions = []
    for entry in entries:
        contract = entry["contract"]
        node = context.by_name(contract)
        if node is None or node.address not in context.descriptors:
            raise ConfigError(f"action contract not found or has no ABI: {contract}")

        user = entry["user"]
        sender = users.get(user) or normalise_address(user)
        if sender is None:
            raise ConfigError(f"action user not found: {user}")

        function = entry["function"]
        raw_args = list(entry.get("args") or [])
        label = entry.get("name") or f"{user}.{contract}.{function}({','.join(str(a) for a in raw_args)})"
        args = [resolve_arg(a, context, users) for a in raw_args]
        descriptor = context.descriptors[node.address]

        actions.append(Action(label, _send(provider, descriptor, node.address, sender, function, args)))
    return actions


def _send(provider: LedgerProvider, descriptor, to: str, sender: str, function: str,
          args: List[Any]) -> Callable[[], Awaitable[SubmittedTransaction]]:
    async def invoke() -> SubmittedTransaction:
        data = descriptor.encode_transaction(function, args)
        await provider.impersonate(sender)
        tx_hash = await provider.send_transaction({"from": sender, "to": to, "data": "0x" + data.hex()})
        return SubmittedTransaction(tx_hash)

    return invoke
