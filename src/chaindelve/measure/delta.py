"""
Differences between two measurement sets of the same graph.
"""

import logging
from typing import List, Optional

from ..exceptions import MeasurementShapeError
from .models import (
    ArrayValue,
    Change,
    Delta,
    DeltaArray,
    ErrorResult,
    Measurement,
    MeasurementDelta,
    MeasurementSet,
    NodeDeltas,
    Reading,
    Transition,
    Value,
)

logger = logging.getLogger(__name__)


def _is_number(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _same(a, b) -> bool:
    return type(a) is type(b) and a == b


def _render(value) -> str:
    return repr(value) if isinstance(value, str) else str(value)


def _describe(reading: Reading) -> str:
    if isinstance(reading, ErrorResult):
        return f'"{reading.message}"'
    if isinstance(reading, ArrayValue):
        return f"[{', '.join(_render(v) for v in reading.values)}]"
    return _render(reading.value)


def _shape(type_tag: str, reading: Reading) -> str:
    base = type_tag[:-2] if type_tag.endswith("[]") else type_tag
    return f"{base}[]" if isinstance(reading, ArrayValue) else base


def compare(before: Reading, after: Reading, type_tag: str = "") -> Optional[Change]:
    """
    The change from ``before`` to ``after``, None when nothing changed.

    Legitimate differences (errors appearing or disappearing, type and length
    changes) are returned as Transition values rather than raised.
    """
    if isinstance(before, ErrorResult) and isinstance(after, ErrorResult):
        if before.message == after.message:
            return None
        return Transition(f"{_describe(before)} => {_describe(after)}")

    if isinstance(before, ErrorResult):
        return Transition(f"{_describe(before)} => value", value=after)

    if isinstance(after, ErrorResult):
        return Transition(f"value => {_describe(after)}", value=before)

    if isinstance(before, Value) and isinstance(after, Value):
        if _same(before.value, after.value):
            return None
        if _is_number(before.value) and _is_number(after.value):
            return Delta(after.value - before.value)
        return Transition(f"{_describe(before)} => {_describe(after)}", value=after)

    if isinstance(before, ArrayValue) and isinstance(after, ArrayValue):
        if len(before.values) != len(after.values):
            return Transition(f"arrays changed length: {len(before.values)} => {len(after.values)}", value=after)
        if all(_same(b, a) for b, a in zip(before.values, after.values)):
            return None
        if all(_is_number(b) and _is_number(a) for b, a in zip(before.values, after.values)):
            return DeltaArray(tuple(a - b for b, a in zip(before.values, after.values)))
        return Transition(f"{_describe(before)} => {_describe(after)}", value=after)

    # scalar <-> array
    return Transition(f"type changed: {_shape(type_tag, before)} => {_shape(type_tag, after)}", value=after)


class DeltaEngine:
    """Positional diff of two evaluation-order-stable measurement sets."""

    def diff(self, before: MeasurementSet, after: MeasurementSet) -> List[NodeDeltas]:
        """
        Compute the per-node deltas from ``before`` to ``after``.

        A leading action summary in either set is ignored. Nodes without any
        change are left out.

        Raises:
            MeasurementShapeError: If the two sets were not produced by the same registry ordering
        """
        before_nodes = before.node_entries()
        after_nodes = after.node_entries()
        if len(before_nodes) != len(after_nodes):
            raise MeasurementShapeError(
                f"measurement sets differ in length: {len(before_nodes)} => {len(after_nodes)}"
            )

        result: List[NodeDeltas] = []
        for position, (b, a) in enumerate(zip(before_nodes, after_nodes)):
            if not b.same_node(a):
                raise MeasurementShapeError(
                    f"node mismatch: {b.name} ({b.address}) => {a.name} ({a.address})", position
                )
            if len(b.measurements) != len(a.measurements):
                raise MeasurementShapeError(
                    f"{b.name}: measurement count differs: {len(b.measurements)} => {len(a.measurements)}", position
                )

            deltas = []
            for mb, ma in zip(b.measurements, a.measurements):
                self._check_identity(b.name, position, mb, ma)
                change = compare(mb.result, ma.result, mb.type)
                if change is not None:
                    deltas.append(MeasurementDelta(name=mb.name, type=mb.type, change=change, target=mb.target))

            if deltas:
                result.append(NodeDeltas(b.address, b.name, b.contract_label, tuple(deltas)))

        logger.debug("%d of %d nodes changed", len(result), len(before_nodes))
        return result

    @staticmethod
    def _check_identity(node_name: str, position: int, before: Measurement, after: Measurement) -> None:
        if (before.name, before.type, before.target) != (after.name, after.type, after.target):
            raise MeasurementShapeError(
                f"{node_name}: measurement mismatch: {before.name}/{before.target} => {after.name}/{after.target}",
                position,
            )
