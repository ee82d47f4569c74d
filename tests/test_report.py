import yaml

from chaindelve.analysis.graph import GraphContext
from chaindelve.analysis.models import ContractRef, Link, Node, NodeKind
from chaindelve.core.contract import ZERO_ADDRESS
from chaindelve.measure.format import FormatRule
from chaindelve.measure.models import (
    ActionSummary,
    ArrayValue,
    ErrorResult,
    Measurement,
    MeasurementSet,
    NodeMeasurements,
    Value,
)
from chaindelve.report import ReportWriter, measurement_table, sanitise_label
from chaindelve.state.snapshot import ActionOutcome
from chaindelve.table import decode_table


def measurements(assets, owner=ZERO_ADDRESS):
    return MeasurementSet((
        NodeMeasurements("0x01", "vault", "Vault", (
            Measurement("totalAssets", "uint256", Value(assets)),
            Measurement("owner", "address", Value(owner)),
            Measurement("fees", "uint256[]", ArrayValue(())),
            Measurement("paused", "bool", ErrorResult("reverted")),
        )),
        NodeMeasurements("0x02", "idle", "Idle", (Measurement("nonce", "uint256", Value(0)),)),
    ))


def outcome(label, assets):
    result = ActionOutcome(label, measurements(assets), gas_used=50000)
    result.measurements = result.measurements.with_summary(result.summary)
    return result


def test_slim_keeps_non_zero_values_and_errors():
    slim = measurements(0).slim()

    assert [e.name for e in slim.node_entries()] == ["vault"]
    assert [m.name for m in slim.node_entries()[0].measurements] == ["paused"]


def test_slim_keeps_summary():
    with_summary = measurements(5).with_summary(ActionSummary("go", gas_used=1))

    assert with_summary.slim().summary.label == "go"


def test_sanitise_label():
    assert sanitise_label("alice.Vault.deposit(100,0xab)") == "alice.Vault.deposit(100,0xab)"
    assert sanitise_label("a/b c") == "a_b_c"


def test_write_run_file_names(tmp_path):
    writer = ReportWriter(tmp_path)
    outcomes = [outcome(f"step {i}", i) for i in range(11)]

    writer.write_run("vault", measurements(0), outcomes)

    names = {p.name for p in tmp_path.iterdir()}
    assert "vault.--.base.measures.yml" in names
    assert "vault.--.base.slim-measures.yml" in names
    assert "vault.--.base.measures.csv" in names
    assert "vault.00.step_0.measures.yml" in names
    assert "vault.10.step_10.delta-measures.yml" in names


def test_delta_report_contents(tmp_path):
    writer = ReportWriter(tmp_path, [FormatRule(measurement="totalAssets", unit="ether")])

    writer.write_run("", measurements(10 ** 18), [outcome("deposit", 3 * 10 ** 18)])

    delta = yaml.safe_load((tmp_path / "0.deposit.delta-measures.yml").read_text())
    assert delta[0] == {"name": "deposit", "gas": 50000}
    assert delta[1]["name"] == "vault"
    assert delta[1]["measurements"] == [{"name": "totalAssets", "type": "uint256", "delta": "+2.0"}]

    base = yaml.safe_load((tmp_path / "-.base.measures.yml").read_text())
    assert base[0]["measurements"][0]["value"] == "1.0"
    assert base[0]["measurements"][1]["value"] == "0x0"
    assert base[0]["measurements"][3] == {"name": "paused", "type": "bool", "error": "reverted"}


def test_measurement_table():
    table = measurement_table(measurements(7))

    assert table.key_fields == ["node", "measurement", "target"]
    assert table.rows[0] == ["vault", "totalAssets", "", "uint256", "7", ""]
    assert table.rows[3] == ["vault", "paused", "", "bool", "", "reverted"]


def test_csv_report_decodes(tmp_path):
    ReportWriter(tmp_path).write_run("x", measurements(7), [])

    table = decode_table((tmp_path / "x.measures.csv").read_text())

    assert table == measurement_table(measurements(7))


def test_write_graph(tmp_path):
    proxy, logic, owner = "0x" + "1" * 40, "0x" + "2" * 40, "0x" + "3" * 40
    context = GraphContext()
    context.add_node(Node(proxy, NodeKind.CONTRACT, "VaultProxy", contract_name="VaultProxy",
                          implementations=[ContractRef(logic, "Vault")],
                          links=[Link(proxy, owner, "owner"), Link(proxy, ZERO_ADDRESS, "guardian")]))
    context.add_node(Node(owner, NodeKind.ADDRESS, "owner", stopper=True))

    paths = ReportWriter(tmp_path).write_graph("vault", context)

    assert [p.name for p in paths] == ["vault.graph.yml", "vault.mmd"]
    graph = yaml.safe_load(paths[0].read_text())
    assert graph["nodes"]["VaultProxy"]["contract"] == "Vault"
    assert graph["links"] == 2
    mermaid = paths[1].read_text()
    assert mermaid.startswith("flowchart TB")
    assert f'{proxy}[["<b>Vault</b><br><i>VaultProxy</i>"]]:::contract' in mermaid
    assert f'{proxy} -- "guardian" --> {proxy}-guardian-0x0' in mermaid
    assert "<hr>" in mermaid
