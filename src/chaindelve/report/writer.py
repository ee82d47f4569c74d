"""
YAML, CSV and mermaid report files.
"""

import logging
import re
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence, Union

import yaml

from ..analysis.graph import GraphContext
from ..measure.delta import DeltaEngine
from ..measure.format import FormatRule, format_entry
from ..measure.models import MeasurementSet, NodeDeltas, deltas_to_list
from ..state.snapshot import ActionOutcome
from ..table.datatable import DataTable, encode_table

logger = logging.getLogger(__name__)

UNSAFE_FILE_CHARS = re.compile(r"[^A-Za-z0-9._,()$=+-]+")


def sanitise_label(label: str) -> str:
    """Make an action label usable inside a file name."""
    return UNSAFE_FILE_CHARS.sub("_", label).strip("_") or "action"


def measurement_table(measurements: MeasurementSet) -> DataTable:
    """Flatten a measurement set into a table keyed by node, measurement and target."""
    table = DataTable(key_fields=["node", "measurement", "target"], fields=["type", "value", "error"])
    for entry in measurements.node_entries():
        for m in entry.measurements:
            value = m.value
            if isinstance(value, list):
                value = " ".join(str(v) for v in value)
            table.add_row([
                entry.name,
                m.name,
                m.target or "",
                m.type,
                "" if value is None else value,
                m.error or "",
            ])
    return table


class ReportWriter:
    """
    Writes the files of one run under ``output_dir``.

    Measurement files are named ``<prefix>.<index>.<label>.<kind>measures.yml``
    where kind is empty, ``slim-`` or ``delta-``.
    """

    def __init__(self, output_dir: Union[str, Path], rules: Sequence[FormatRule] = (), show_format: bool = False):
        self.output_dir = Path(output_dir)
        self.rules = list(rules)
        self.show_format = show_format
        self.written: List[Path] = []

    def _write(self, name: str, text: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / name
        with open(path, "w") as f:
            f.write(text)
        self.written.append(path)
        logger.debug("wrote %s", path)
        return path

    def write_yaml(self, name: str, data: Any) -> Path:
        return self._write(name, yaml.safe_dump(data, sort_keys=False, default_flow_style=False, allow_unicode=True))

    def _format(self, entries: Iterable[dict]) -> List[dict]:
        return [format_entry(e, self.rules, self.show_format) for e in entries]

    def write_measures(self, parts: Sequence[str], measurements: MeasurementSet) -> None:
        """Write the full and slim files of one measurement set, plus its CSV table."""
        stem = ".".join(parts)
        self.write_yaml(f"{stem}.measures.yml", self._format(measurements.to_list()))
        self.write_yaml(f"{stem}.slim-measures.yml", self._format(measurements.slim().to_list()))
        self._write(f"{stem}.measures.csv", encode_table(measurement_table(measurements)))

    def write_deltas(self, parts: Sequence[str], deltas: Sequence[NodeDeltas], outcome: Optional[ActionOutcome] = None) -> None:
        entries = deltas_to_list(deltas)
        if outcome is not None:
            entries.insert(0, outcome.summary.to_dict())
        self.write_yaml(f"{'.'.join(parts)}.delta-measures.yml", self._format(entries))

    def write_run(self, prefix: str, base: MeasurementSet, outcomes: Sequence[ActionOutcome]) -> List[Path]:
        """
        Write the base set and, for every action, its post-action set and delta to base.

        Returns:
            Paths of the files written
        """
        start = len(self.written)
        width = len(str(len(outcomes) - 1)) if outcomes else 0
        head = [prefix] if prefix else []

        if width:
            self.write_measures(head + ["-" * width, "base"], base)
        else:
            self.write_measures(head or ["base"], base)

        engine = DeltaEngine()
        for index, outcome in enumerate(outcomes):
            parts = head + [str(index).zfill(width), sanitise_label(outcome.label)]
            self.write_measures(parts, outcome.measurements)
            self.write_deltas(parts, engine.diff(base, outcome.measurements), outcome)
        return self.written[start:]

    def write_graph(self, name: str, context: GraphContext) -> List[Path]:
        """Write ``<name>.graph.yml`` and the mermaid flowchart ``<name>.mmd``."""
        return [
            self.write_yaml(f"{name}.graph.yml", context.to_dict()),
            self._write(f"{name}.mmd", context.to_mermaid() + "\n"),
        ]
