import asyncio

import aiohttp
import pytest
from eth_utils import function_signature_to_4byte_selector

from chaindelve.analysis.graph import GraphContext
from chaindelve.analysis.models import Node, NodeKind
from chaindelve.core.contract import ContractDescriptor
from chaindelve.exceptions import ConfigError, SnapshotError
from chaindelve.measure.models import Measurement, MeasurementSet, NodeMeasurements, Value
from chaindelve.state.snapshot import (
    Action,
    ActionRunner,
    Snapshotter,
    SubmittedTransaction,
    actions_from_config,
)

from conftest import abi_json, addr, fn


def measure_counter(ledger):
    async def measure():
        measurement = Measurement("counter", "uint256", Value(ledger.state["counter"]))
        return MeasurementSet((NodeMeasurements("0x01", "vault", "Vault", (measurement,)),))

    return measure


def bump(ledger, amount, result=None):
    async def invoke():
        ledger.state["counter"] += amount
        if result is None:
            return SubmittedTransaction(await ledger.send_transaction({"to": "0x01"}))
        return result

    return invoke


def counter_of(outcome):
    return outcome.measurements.node_entries()[0].measurements[0].value


def test_actions_run_against_the_same_base_state(ledger):
    ledger.state["counter"] = 0
    actions = [Action("first", bump(ledger, 1)), Action("second", bump(ledger, 10, result=42))]

    outcomes = asyncio.run(ActionRunner(ledger).run_sequence(measure_counter(ledger), actions))

    assert [o.label for o in outcomes] == ["first", "second"]
    assert counter_of(outcomes[0]) == 1
    assert counter_of(outcomes[1]) == 10  # first action's change was reverted
    assert ledger.state["counter"] == 10  # the last action's state is kept

    assert outcomes[0].gas_used == 21000
    assert outcomes[0].value is None
    assert outcomes[1].gas_used is None
    assert outcomes[1].value == 42


def test_failing_action_is_recorded_and_measured(ledger):
    ledger.state["counter"] = 3

    async def explode():
        raise RuntimeError("insufficient balance")

    actions = [Action("boom", explode), Action("after", bump(ledger, 1))]
    outcomes = asyncio.run(ActionRunner(ledger).run_sequence(measure_counter(ledger), actions))

    assert outcomes[0].error == "insufficient balance"
    assert not outcomes[0].succeeded
    assert counter_of(outcomes[0]) == 3
    assert counter_of(outcomes[1]) == 4


def test_summary_leads_post_action_measurements(ledger):
    ledger.state["counter"] = 0
    outcomes = asyncio.run(ActionRunner(ledger).run_sequence(measure_counter(ledger), [Action("one", bump(ledger, 1))]))

    summary = outcomes[0].measurements.summary
    assert summary.label == "one"
    assert summary.to_dict() == {"name": "one", "gas": 21000}


def test_reverted_transaction(ledger):
    ledger.state["counter"] = 0

    async def reverted():
        tx_hash = await ledger.send_transaction({"to": "0x01"})
        ledger.receipts[tx_hash]["status"] = "0x0"
        return SubmittedTransaction(tx_hash)

    outcomes = asyncio.run(ActionRunner(ledger).run_sequence(measure_counter(ledger), [Action("r", reverted)]))

    assert outcomes[0].error == "transaction reverted"
    assert outcomes[0].gas_used == 21000


def test_restore_failure_is_fatal(ledger):
    ledger.state["counter"] = 0
    ledger.revert_result = False
    actions = [Action("a", bump(ledger, 1)), Action("b", bump(ledger, 1))]

    with pytest.raises(SnapshotError):
        asyncio.run(ActionRunner(ledger).run_sequence(measure_counter(ledger), actions))


def test_transport_failures_become_snapshot_errors(ledger, monkeypatch):
    async def refused():
        raise aiohttp.ClientConnectionError("connection refused")

    async def timed_out(handle):
        raise asyncio.TimeoutError()

    snapshotter = Snapshotter(ledger)
    asyncio.run(snapshotter.take())
    monkeypatch.setattr(ledger, "revert_to", timed_out)
    with pytest.raises(SnapshotError):
        asyncio.run(snapshotter.restore())

    monkeypatch.setattr(ledger, "snapshot", refused)
    with pytest.raises(SnapshotError) as info:
        asyncio.run(snapshotter.take())
    assert "connection refused" in info.value.message


def test_restore_without_snapshot(ledger):
    with pytest.raises(SnapshotError):
        asyncio.run(Snapshotter(ledger).restore())


def test_no_actions(ledger):
    assert asyncio.run(ActionRunner(ledger).run_sequence(measure_counter(ledger), [])) == []


@pytest.fixture
def vault_context(ledger):
    vault, alice = addr(0x10), addr(0xA11CE)
    context = GraphContext()
    context.add_node(Node(vault, NodeKind.CONTRACT, "Vault", contract_name="Vault"))
    abi = abi_json(fn("deposit", [], ["uint256", "address"], mutability="nonpayable"))
    context.descriptors[vault] = ContractDescriptor.from_abi(vault, abi, ledger)
    return context, vault, alice


def test_actions_from_config(ledger, vault_context):
    context, vault, alice = vault_context
    entries = [{"contract": "Vault", "function": "deposit", "user": "alice", "args": ["100", "Vault"]}]

    actions = actions_from_config(entries, context, {"alice": alice}, ledger)

    assert actions[0].label == "alice.Vault.deposit(100,Vault)"
    result = asyncio.run(actions[0].invoke())
    assert isinstance(result, SubmittedTransaction)
    assert ledger.impersonated == [alice]

    tx = ledger.sent[0]
    assert tx["from"] == alice
    assert tx["to"] == vault
    data = bytes.fromhex(tx["data"][2:])
    assert data[:4] == function_signature_to_4byte_selector("deposit(uint256,address)")
    assert int.from_bytes(data[4:36], "big") == 100
    assert data[48:68] == bytes.fromhex(vault[2:])


def test_actions_from_config_unknown_contract(ledger, vault_context):
    context, _, alice = vault_context

    with pytest.raises(ConfigError):
        actions_from_config([{"contract": "Nope", "function": "deposit", "user": "alice"}], context,
                            {"alice": alice}, ledger)
