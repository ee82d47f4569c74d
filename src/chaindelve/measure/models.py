"""
Measurement and delta value objects.

A reading is exactly one of Value, ArrayValue or ErrorResult; a change is
exactly one of Delta, DeltaArray or Transition.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from ..core.contract import ZERO_ADDRESS

Scalar = Union[int, str, bool]


@dataclass(frozen=True)
class Value:
    value: Scalar


@dataclass(frozen=True)
class ArrayValue:
    values: Tuple[Scalar, ...]


@dataclass(frozen=True)
class ErrorResult:
    message: str


Reading = Union[Value, ArrayValue, ErrorResult]


def reading_from(raw: Any) -> Reading:
    """Wrap a calculation result."""
    if isinstance(raw, (list, tuple)):
        return ArrayValue(tuple(raw))
    return Value(raw)


def raw_value(reading: Reading) -> Any:
    if isinstance(reading, Value):
        return reading.value
    if isinstance(reading, ArrayValue):
        return list(reading.values)
    return None


@dataclass(frozen=True)
class Delta:
    delta: int


@dataclass(frozen=True)
class DeltaArray:
    deltas: Tuple[int, ...]


@dataclass(frozen=True)
class Transition:
    """A change that has no numeric difference, optionally keeping the surviving value."""
    description: str
    value: Optional[Reading] = None


Change = Union[Delta, DeltaArray, Transition]


@dataclass(frozen=True)
class Measurement:
    """One named, typed observation of a node (or of a node against a target)."""
    name: str
    type: str
    result: Reading
    target: Optional[str] = None
    value_name: Optional[Union[str, Tuple[str, ...]]] = None

    @property
    def error(self) -> Optional[str]:
        return self.result.message if isinstance(self.result, ErrorResult) else None

    @property
    def value(self) -> Any:
        return raw_value(self.result)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "type": self.type}
        if self.target is not None:
            result["target"] = self.target
        if isinstance(self.result, ErrorResult):
            result["error"] = self.result.message
        else:
            result["value"] = raw_value(self.result)
        if self.value_name is not None:
            result["valueName"] = list(self.value_name) if isinstance(self.value_name, tuple) else self.value_name
        return result


@dataclass(frozen=True)
class MeasurementDelta:
    name: str
    type: str
    change: Change
    target: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "type": self.type}
        if self.target is not None:
            result["target"] = self.target
        if isinstance(self.change, Delta):
            result["delta"] = self.change.delta
        elif isinstance(self.change, DeltaArray):
            result["delta"] = list(self.change.deltas)
        else:
            result["error"] = self.change.description
            if self.change.value is not None:
                result["value"] = raw_value(self.change.value)
        return result


@dataclass(frozen=True)
class NodeMeasurements:
    """The measurements of one node, in evaluation order."""
    address: str
    name: str
    contract_label: str
    measurements: Tuple[Measurement, ...]

    def same_node(self, other: "NodeMeasurements") -> bool:
        return (self.address, self.name, self.contract_label) == (other.address, other.name, other.contract_label)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "name": self.name,
            "contractType": self.contract_label,
            "measurements": [m.to_dict() for m in self.measurements],
        }


@dataclass(frozen=True)
class NodeDeltas:
    address: str
    name: str
    contract_label: str
    deltas: Tuple[MeasurementDelta, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "name": self.name,
            "contractType": self.contract_label,
            "measurements": [d.to_dict() for d in self.deltas],
        }


@dataclass(frozen=True)
class ActionSummary:
    """Leading entry of a post-action measurement set describing the action."""
    label: str
    error: Optional[str] = None
    gas_used: Optional[int] = None
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.label}
        if self.error is not None:
            result["error"] = self.error
        if self.gas_used is not None:
            result["gas"] = self.gas_used
        if self.value is not None:
            result["value"] = self.value
        return result


SetEntry = Union[ActionSummary, NodeMeasurements]


@dataclass(frozen=True)
class MeasurementSet:
    """Measurements of every node, ordered by node name."""
    entries: Tuple[SetEntry, ...]
    success_count: int = 0

    def node_entries(self) -> List[NodeMeasurements]:
        return [e for e in self.entries if isinstance(e, NodeMeasurements)]

    @property
    def summary(self) -> Optional[ActionSummary]:
        if self.entries and isinstance(self.entries[0], ActionSummary):
            return self.entries[0]
        return None

    def with_summary(self, summary: ActionSummary) -> "MeasurementSet":
        return replace(self, entries=(summary,) + tuple(self.node_entries()))

    def slim(self) -> "MeasurementSet":
        """Keep only non-zero values and errors; drop nodes left empty."""
        entries: List[SetEntry] = []
        for entry in self.entries:
            if isinstance(entry, ActionSummary):
                entries.append(entry)
                continue
            kept = tuple(m for m in entry.measurements if _is_non_zero(m))
            if kept:
                entries.append(replace(entry, measurements=kept))
        return replace(self, entries=tuple(entries))

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.entries]


def _is_non_zero(measurement: Measurement) -> bool:
    result = measurement.result
    if isinstance(result, ErrorResult):
        return True
    if isinstance(result, ArrayValue):
        return len(result.values) > 0
    if measurement.type == "address":
        return result.value != ZERO_ADDRESS
    return bool(result.value)


def deltas_to_list(deltas: Sequence[NodeDeltas]) -> List[Dict[str, Any]]:
    return [d.to_dict() for d in deltas]
