import asyncio

from chaindelve.analysis.graph import GraphContext
from chaindelve.analysis.models import Node, NodeKind
from chaindelve.core.contract import ContractDescriptor
from chaindelve.measure.models import ArrayValue, ErrorResult, Value
from chaindelve.measure.registry import MeasurementRegistry

from conftest import abi_json, addr, fn

A, B, C = addr(0xA), addr(0xB), addr(0xC)


def make_context():
    context = GraphContext()
    context.add_node(Node(B, NodeKind.CONTRACT, "beta", contract_name="Pool"))
    context.add_node(Node(A, NodeKind.CONTRACT, "alpha", contract_name="Pool"))
    context.add_node(Node(C, NodeKind.ADDRESS, "carol"))
    return context


def test_nodes_evaluated_in_name_order():
    registry = MeasurementRegistry()

    async def supply(address):
        return int(address, 16)

    registry.register("Pool", "supply", "uint256", supply)
    result = asyncio.run(registry.evaluate_all(make_context()))

    assert [e.name for e in result.node_entries()] == ["alpha", "beta"]
    assert result.node_entries()[0].measurements[0].result == Value(0xA)
    assert result.node_entries()[0].contract_label == "Pool"
    assert result.success_count == 2


def test_lower_case_address_selector():
    registry = MeasurementRegistry()

    async def seven(address):
        return 7

    registry.register(A.lower(), "seven", "uint256", seven)
    result = asyncio.run(registry.evaluate_all(make_context()))

    assert [e.address for e in result.node_entries()] == [A]
    assert result.node_entries()[0].measurements[0].result == Value(7)


def test_failing_calculation_is_recorded():
    registry = MeasurementRegistry()

    async def broken(address):
        raise ValueError("execution reverted")

    async def fine(address):
        return [1, 2]

    registry.register(A, "broken", "uint256", broken)
    registry.register(A, "fine", "uint256[]", fine)
    result = asyncio.run(registry.evaluate_all(make_context()))

    alpha = result.node_entries()[0]
    assert alpha.measurements[0].result == ErrorResult("execution reverted")
    assert alpha.measurements[0].value is None
    assert alpha.measurements[1].result == ArrayValue((1, 2))
    assert result.success_count == 1


def test_relational_measurements_skip_self_and_follow_own():
    registry = MeasurementRegistry()
    seen = []

    async def balance_of(address, other):
        seen.append((address, other))
        return 7

    async def supply(address):
        return 100

    registry.register(A, "balanceOf", "uint256", balance_of, relational=True)
    registry.register(A, "totalSupply", "uint256", supply)
    result = asyncio.run(registry.evaluate_all(make_context()))

    measurements = result.node_entries()[0].measurements
    assert [(m.name, m.target) for m in measurements] == [
        ("totalSupply", None),
        ("balanceOf", "beta"),
        ("balanceOf", "carol"),
    ]
    assert (A, A) not in seen


def test_address_values_are_named():
    registry = MeasurementRegistry()

    async def owner(address):
        return C

    async def members(address):
        return [C, addr(0xDEAD)]

    async def strangers(address):
        return [addr(0xDEAD)]

    registry.register(A, "owner", "address", owner)
    registry.register(A, "members", "address[]", members)
    registry.register(A, "strangers", "address[]", strangers)
    result = asyncio.run(registry.evaluate_all(make_context()))

    owner_m, members_m, strangers_m = result.node_entries()[0].measurements
    assert owner_m.value_name == "carol"
    assert members_m.value_name == ("carol", addr(0xDEAD))
    assert strangers_m.value_name is None


def test_register_contract_reads(ledger):
    pool = A
    context = make_context()
    abi = abi_json(
        fn("totalSupply", ["uint256"]),
        fn("getReserves", [("reserve0", "uint112"), ("reserve1", "uint112"), ("ts", "uint32")]),
        fn("owner", ["address"]),
        fn("name", ["string"]),
        fn("balanceOf", ["uint256"], ["address"]),
        fn("holdings", ["uint256[]"], ["address"]),
        fn("mint", ["uint256"], ["uint256"], mutability="nonpayable"),
    )
    context.descriptors[pool] = ContractDescriptor.from_abi(pool, abi, ledger)
    ledger.on_call(pool, "totalSupply()", ["uint256"], [1000])
    ledger.on_call(pool, "getReserves()", ["uint112", "uint112", "uint32"], [10, 20, 30])
    ledger.on_call(pool, "owner()", ["address"], [C])
    ledger.on_call(pool, "balanceOf(address)", ["uint256"], [5], ["address"], [B])

    registry = MeasurementRegistry()
    assert registry.register_contract_reads(context) == 6
    result = asyncio.run(registry.evaluate_all(context))

    alpha = result.node_entries()[0]
    by_key = {(m.name, m.target): m for m in alpha.measurements}
    assert by_key[("totalSupply", None)].value == 1000
    assert by_key[("getReserves.reserve1", None)].value == 20
    assert by_key[("getReserves.ts", None)].value == 30
    assert by_key[("owner", None)].value_name == "carol"
    assert by_key[("balanceOf", "beta")].value == 5
    assert by_key[("balanceOf", "carol")].error == "eth_call: execution reverted"
    assert ("holdings", "beta") not in by_key
