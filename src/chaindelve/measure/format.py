"""
Report formatting of measurement values and deltas.

Rules select measurements by type, node name, contract label and measurement
name. For each measurement the matching rules are merged most-specific first:
the first rule to supply ``unit`` wins it, likewise ``precision``. A matching
rule that supplies neither means "leave this measurement alone".
"""

import copy
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Any, Dict, Iterable, List, Optional, Union

from ..core.contract import ZERO_ADDRESS
from ..exceptions import ConfigError

MAX_UINT256 = 2 ** 256 - 1

# anything this large is an "infinite" allowance or sentinel rather than an amount
HUGE_VALUE = MAX_UINT256 // 10 ** 21

UNIT_DECIMALS = {
    "wei": 0,
    "kwei": 3,
    "mwei": 6,
    "gwei": 9,
    "szabo": 12,
    "finney": 15,
    "ether": 18,
}

FORMATTED_FIELDS = ("value", "delta")


@dataclass(frozen=True)
class FormatRule:
    """One ``format`` entry of the configuration."""
    type: Optional[str] = None
    contract: Optional[str] = None
    contract_type: Optional[str] = None
    measurement: Optional[str] = None
    unit: Optional[Union[int, str]] = None
    precision: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormatRule":
        unit = data.get("unit")
        if isinstance(unit, str) and unit not in UNIT_DECIMALS:
            raise ConfigError(f"unknown unit in format rule: {unit}")
        precision = data.get("precision")
        return cls(
            type=data.get("type"),
            contract=data.get("contract"),
            contract_type=data.get("contractType"),
            measurement=data.get("measurement"),
            unit=unit,
            precision=int(precision) if precision is not None else None,
        )

    @property
    def specificity(self) -> int:
        return sum(s is not None for s in (self.type, self.contract, self.contract_type, self.measurement))

    @property
    def is_no_format(self) -> bool:
        return self.unit is None and self.precision is None

    def matches(self, node_name: str, contract_label: str, measurement_name: str, measurement_type: str) -> bool:
        return (
            (self.type is None or self.type == measurement_type)
            and (self.measurement is None or self.measurement == measurement_name)
            and (self.contract is None or self.contract == node_name)
            and (self.contract_type is None or self.contract_type == contract_label)
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.unit is not None:
            result["unit"] = self.unit
        if self.precision is not None:
            result["precision"] = self.precision
        return result


def merge_rules(rules: Iterable[FormatRule], node_name: str, contract_label: str,
                measurement_name: str, measurement_type: str) -> Optional[FormatRule]:
    """
    The format to apply to one measurement.

    Returns:
        None when no rule matches, an empty FormatRule when formatting is
        explicitly switched off, otherwise a rule holding the merged unit and
        precision
    """
    matching = [r for r in rules if r.matches(node_name, contract_label, measurement_name, measurement_type)]
    if not matching:
        return None
    matching.sort(key=lambda r: r.specificity, reverse=True)

    unit = precision = None
    for rule in matching:
        if rule.is_no_format:
            return FormatRule()
        if unit is None:
            unit = rule.unit
        if precision is None:
            precision = rule.precision
        if unit is not None and precision is not None:
            break
    return FormatRule(unit=unit, precision=precision)


def unit_decimals(unit: Optional[Union[int, str]]) -> int:
    if unit is None:
        return 0
    if isinstance(unit, str):
        return UNIT_DECIMALS[unit]
    return int(unit)


def _plain(value: Decimal) -> str:
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0")
        if text.endswith("."):
            text += "0"
    return text


def format_number(value: int, add_plus: bool = False, unit: Optional[Union[int, str]] = None,
                  precision: Optional[int] = None) -> str:
    """
    Scale ``value`` by ``unit`` decimals and round half-up to ``precision`` places.

    Examples:
        >>> format_number(1234500000000000000, unit="ether", precision=3)
        '1.235'
        >>> format_number(12345, precision=-2)
        '12300'
    """
    decimals = unit_decimals(unit)
    with localcontext() as ctx:
        ctx.prec = 100
        scaled = Decimal(value).scaleb(-decimals)
        text = _plain(scaled) if decimals else str(value)

        current = len(text) - text.index(".") - 1 if "." in text else 0
        if precision is not None and (current > precision or precision < 0):
            rounded = scaled.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_UP)
            text = format(rounded, "f")
    return ("+" if add_plus and value > 0 else "") + text


def _format_scalar(value: Any, is_delta: bool, rule: Optional[FormatRule]) -> Any:
    if isinstance(value, bool) or not isinstance(value, int):
        if value == ZERO_ADDRESS:
            return "0x0"
        return value
    if abs(value) >= HUGE_VALUE:
        return "-MaxUint256" if value < 0 else "MaxUint256"
    if rule is None or rule.is_no_format:
        return value
    return format_number(value, is_delta, rule.unit, rule.precision)


def format_entry(entry: Dict[str, Any], rules: List[FormatRule], show_format: bool = False) -> Dict[str, Any]:
    """
    Format the measurements of one report entry (a node's measurement or delta dict).

    Entries without a ``measurements`` list (action summaries) are returned unchanged.
    """
    if not isinstance(entry.get("measurements"), list):
        return entry

    result = copy.deepcopy(entry)
    for measurement in result["measurements"]:
        rule = merge_rules(rules, result.get("name", ""), result.get("contractType", ""),
                           measurement.get("name", ""), measurement.get("type", ""))
        unformatted: Dict[str, Any] = {}
        for field_name in FORMATTED_FIELDS:
            if field_name not in measurement:
                continue
            raw = measurement[field_name]
            is_delta = field_name == "delta"
            if isinstance(raw, list):
                formatted = [_format_scalar(v, is_delta, rule) for v in raw]
            else:
                formatted = _format_scalar(raw, is_delta, rule)
            if formatted != raw:
                unformatted[field_name] = raw
            measurement[field_name] = formatted

        if show_format and rule is not None:
            measurement["format"] = rule.to_dict()
            if unformatted:
                measurement["unformatted"] = unformatted
    return result
