"""
Measurement registration and evaluation.

Templates are registered against a node address or a contract label and
evaluated over a discovered graph into a MeasurementSet.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from ..analysis.graph import GraphContext, normalise_address
from ..analysis.models import Node
from ..core.contract import AbiFunction, ContractDescriptor
from ..exceptions import error_message
from .models import ErrorResult, Measurement, MeasurementSet, NodeMeasurements, reading_from

logger = logging.getLogger(__name__)

MEASURED_TYPE = re.compile(r"^(u?int\d+|address)(\[\])?$")
SCALAR_INT_TYPE = re.compile(r"^u?int\d+$")

Calculation = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class MeasurementTemplate:
    """
    How to take one measurement.

    The calculation is called with the node address, and for relational
    templates also with the address of the other node.
    """
    name: str
    type: str
    calculation: Calculation
    relational: bool = False


class MeasurementRegistry:
    """Templates keyed by node address or contract label, in registration order."""

    def __init__(self):
        self._templates: List[Tuple[str, MeasurementTemplate]] = []

    def __len__(self) -> int:
        return len(self._templates)

    def register(self, selector: str, name: str, type: str, calculation: Calculation,
                 relational: bool = False) -> MeasurementTemplate:
        """
        Register a measurement.

        Args:
            selector: A node address, or a contract label applying to every node of that contract
            name: Measurement name
            type: ABI-style type tag (``uint256``, ``address[]``...)
            calculation: Async callable producing the value
            relational: Evaluate against every other node
        """
        template = MeasurementTemplate(name=name, type=type, calculation=calculation, relational=relational)
        self._templates.append((normalise_address(selector) or selector, template))
        return template

    def templates_for(self, node: Node) -> List[MeasurementTemplate]:
        return [t for selector, t in self._templates if selector in (node.address, node.contract_label)]

    async def evaluate_all(self, context: GraphContext) -> MeasurementSet:
        """
        Evaluate every template for every node.

        Nodes are visited in display-name order. A failing calculation is
        recorded as an error and never stops the evaluation.
        """
        nodes = context.sorted_nodes()
        entries = []
        success_count = 0

        for node in nodes:
            templates = self.templates_for(node)
            measurements: List[Measurement] = []

            for template in templates:
                if template.relational:
                    continue
                measurement = await self._measure(context, node, template)
                success_count += measurement.error is None
                measurements.append(measurement)

            for template in templates:
                if not template.relational:
                    continue
                for other in nodes:
                    if other.address == node.address:
                        continue
                    measurement = await self._measure(context, node, template, other)
                    success_count += measurement.error is None
                    measurements.append(measurement)

            if measurements:
                entries.append(NodeMeasurements(
                    address=node.address,
                    name=node.display_name,
                    contract_label=node.contract_label,
                    measurements=tuple(measurements),
                ))

        logger.info("measured %d values across %d nodes", success_count, len(entries))
        return MeasurementSet(entries=tuple(entries), success_count=success_count)

    async def _measure(self, context: GraphContext, node: Node, template: MeasurementTemplate,
                       other: Optional[Node] = None) -> Measurement:
        try:
            if other is not None:
                raw = await template.calculation(node.address, other.address)
            else:
                raw = await template.calculation(node.address)
        except Exception as e:
            logger.debug("%s.%s failed: %s", node.display_name, template.name, e)
            return Measurement(
                name=template.name,
                type=template.type,
                result=ErrorResult(error_message(e)),
                target=other.display_name if other else None,
            )

        if other is not None:
            return Measurement(template.name, template.type, reading_from(raw), target=other.display_name)
        return Measurement(template.name, template.type, reading_from(raw), value_name=value_name(context, template.type, raw))

    def register_contract_reads(self, context: GraphContext) -> int:
        """
        Register a measurement for every numeric or address output of each contract's read functions.

        Zero-argument functions give plain measurements; functions taking a
        single address give relational ones (scalar integer outputs only).

        Returns:
            Number of templates registered
        """
        count = 0
        for address, descriptor in context.descriptors.items():
            for func in descriptor.list_zero_arg_read_functions():
                single = len(func.outputs) == 1
                for index, output in enumerate(func.outputs):
                    if not MEASURED_TYPE.match(output.type):
                        continue
                    name = func.output_name(None if single else index)
                    self.register(address, name, output.type, _read_output(descriptor, func, index))
                    count += 1

            for func in descriptor.list_address_arg_read_functions():
                single = len(func.outputs) == 1
                for index, output in enumerate(func.outputs):
                    if not SCALAR_INT_TYPE.match(output.type):
                        continue
                    name = func.output_name(None if single else index)
                    self.register(address, name, output.type, _read_output(descriptor, func, index), relational=True)
                    count += 1

        logger.debug("registered %d contract read measurements", count)
        return count


def _read_output(descriptor: ContractDescriptor, func: AbiFunction, index: int) -> Calculation:
    async def calculation(address: str, *args: Any) -> Any:
        return (await descriptor.call_function(func, *args))[index]

    return calculation


def value_name(context: GraphContext, type: str, value: Any) -> Optional[Union[str, Tuple[str, ...]]]:
    """Name the node(s) an address value points at, None when nothing resolves."""
    if type == "address" and isinstance(value, str):
        node = context.get(value)
        return node.display_name if node else None

    if type == "address[]" and isinstance(value, (list, tuple)):
        names = []
        any_names = False
        for item in value:
            node = context.get(item) if isinstance(item, str) else None
            any_names = any_names or node is not None
            names.append(node.display_name if node else str(item))
        return tuple(names) if any_names else None
    return None
