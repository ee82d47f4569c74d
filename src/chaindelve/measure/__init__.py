"""Measurements, deltas and their report formatting."""

from .models import (
    ActionSummary,
    ArrayValue,
    Delta,
    DeltaArray,
    ErrorResult,
    Measurement,
    MeasurementDelta,
    MeasurementSet,
    NodeDeltas,
    NodeMeasurements,
    Transition,
    Value,
    deltas_to_list,
    reading_from,
)
from .registry import MeasurementRegistry, MeasurementTemplate
from .delta import DeltaEngine, compare
from .format import FormatRule, format_entry, format_number, merge_rules

__all__ = [
    "ActionSummary",
    "ArrayValue",
    "Delta",
    "DeltaArray",
    "ErrorResult",
    "Measurement",
    "MeasurementDelta",
    "MeasurementSet",
    "NodeDeltas",
    "NodeMeasurements",
    "Transition",
    "Value",
    "deltas_to_list",
    "reading_from",
    "MeasurementRegistry",
    "MeasurementTemplate",
    "DeltaEngine",
    "compare",
    "FormatRule",
    "format_entry",
    "format_number",
    "merge_rules",
]
