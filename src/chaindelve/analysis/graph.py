"""
Address graph discovery.

Starting from seed addresses, every contract's parameterless view/pure
functions that return addresses are called and each returned address becomes
a named link and, unless already visited, the next address to explore.
"""

import asyncio
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from web3 import Web3

from ..core.contract import ZERO_ADDRESS, AbiFunction, ContractDescriptor
from ..core.rpc import LedgerProvider
from ..metadata.etherscan import AddressInfo, MetadataResolver, abis_for
from .models import ContractRef, Link, Node, NodeKind, TokenInfo, short_address

logger = logging.getLogger(__name__)

ADDRESS_TYPES = ("address", "address[]")


def normalise_address(address: str) -> Optional[str]:
    """Checksummed form of ``address``, or None when it is not an address."""
    if isinstance(address, str) and Web3.is_address(address):
        return Web3.to_checksum_address(address)
    return None


@dataclass
class GraphContext:
    """
    The result of one discovery run, owned by the caller.

    Holds the nodes (in discovery order), the reverse links and the contract
    descriptors used to read each contract node.
    """
    nodes: Dict[str, Node] = field(default_factory=dict)
    back_links: Dict[str, List[Link]] = field(default_factory=dict)
    descriptors: Dict[str, ContractDescriptor] = field(default_factory=dict)

    def add_node(self, node: Node) -> None:
        self.nodes[node.address] = node
        for link in node.links:
            self.back_links.setdefault(link.to_address, []).append(link)

    @property
    def all_links(self) -> List[Link]:
        return [link for node in self.nodes.values() for link in node.links]

    def get(self, address: str) -> Optional[Node]:
        return self.nodes.get(normalise_address(address) or address)

    def name_of(self, address: str) -> str:
        node = self.get(address)
        return node.display_name if node else address

    def by_name(self, name: str) -> Optional[Node]:
        for node in self.nodes.values():
            if node.display_name == name:
                return node
        return None

    def sorted_nodes(self) -> List[Node]:
        """Nodes ordered by display name (then address) for deterministic output."""
        return sorted(self.nodes.values(), key=lambda n: (n.display_name, n.address))

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return {
            "nodes": {node.display_name: node.to_dict() for node in self.sorted_nodes()},
            "links": len(self.all_links),
        }

    def to_mermaid(self) -> str:
        """Generate Mermaid flowchart syntax."""
        lines = [
            "flowchart TB",
            "classDef contract font-size:12px,stroke:#333",
            "classDef address font-size:12px,stroke:#999,stroke-dasharray:3",
        ]

        for node in self.nodes.values():
            label = node.display_name
            if node.implementation and node.implementation.name:
                label = f"<b>{node.implementation.name}</b><br><i>{label}</i>"
            if node.token and node.token.symbol:
                label = f"{node.token.symbol}<br>{label}"
            if node.stopper:
                label = f"{label}<br><hr>"

            if node.kind == NodeKind.CONTRACT:
                shape = f'[["{label}"]]' if node.implementations else f'["{label}"]'
                lines.append(f"    {node.address}{shape}:::contract")
            elif node.kind == NodeKind.ADDRESS:
                lines.append(f'    {node.address}(["{label}"]):::address')
            else:
                lines.append(f'    {node.address}("{label}"):::address')

        for link in self.all_links:
            to = link.to_address
            if to == ZERO_ADDRESS:
                to = f"{link.from_address}-{link.name}-0x0"
                lines.append(f"    {to}((0x0))")
            lines.append(f'    {link.from_address} -- "{link.name}" --> {to}')

        return "\n".join(lines)


class GraphBuilder:
    """
    Breadth-first discovery of the address graph.

    Nodes are processed one at a time; the read calls for a single node are
    issued concurrently.
    """

    def __init__(self, provider: LedgerProvider, resolver: MetadataResolver, with_creation: bool = False):
        self.provider = provider
        self.resolver = resolver
        self.with_creation = with_creation

    async def discover(self, seeds: Iterable[str], stop_list: Iterable[str] = ()) -> GraphContext:
        """
        Discover the graph reachable from ``seeds``.

        Args:
            seeds: Addresses to start from (duplicates are harmless)
            stop_list: Addresses recorded with their links but not traversed through

        Returns:
            GraphContext with every visited node

        Raises:
            MetadataError: If the metadata service fails
        """
        context = GraphContext()
        stoppers = {normalise_address(a) or a for a in stop_list}
        queue = deque(normalise_address(a) or a for a in seeds)
        visited: Set[str] = set()

        while queue:
            address = queue.popleft()
            if address in visited or address == ZERO_ADDRESS:
                continue
            visited.add(address)

            node = await self._visit(address, context)
            node.stopper = address in stoppers
            context.add_node(node)
            logger.debug("visited %s (%s) with %d links", node.display_name, node.kind.value, len(node.links))

            if node.stopper:
                continue
            for link in node.links:
                if link.to_address != ZERO_ADDRESS and link.to_address not in visited:
                    queue.append(link.to_address)

        assign_unique_names(context)
        logger.info("discovered %d nodes and %d links", len(context.nodes), len(context.all_links))
        return context

    async def _visit(self, address: str, context: GraphContext) -> Node:
        if normalise_address(address) is None:
            return Node(address=address, kind=NodeKind.INVALID, display_name=address)

        info = await self.resolver.resolve(address)
        if not info.is_contract:
            return Node(address=address, kind=NodeKind.ADDRESS, display_name=short_address(address))

        node = Node(
            address=address,
            kind=NodeKind.CONTRACT,
            display_name=self._display_name(info) or short_address(address),
            contract_name=self._contract_name(info),
        )
        if info.erc20_symbol or info.erc20_name:
            node.token = TokenInfo(symbol=info.erc20_symbol, name=info.erc20_name)
        if info.implementation_address:
            node.implementations.append(ContractRef(info.implementation_address, info.implementation_name))

        descriptor = self._descriptor(info)
        if descriptor is not None:
            context.descriptors[address] = descriptor
            node.links = await self._discover_links(descriptor)
        else:
            logger.warning("no ABI for contract %s, links not followed", address)

        if self.with_creation:
            creation = await self.resolver.creation(address)
            if creation:
                node.creator = creation["creator"]
                node.created_at = creation["timestamp"]
        return node

    @classmethod
    def _display_name(cls, info: AddressInfo) -> Optional[str]:
        # tokens go by their symbol, proxies by their own name
        if info.implementation_address:
            return cls._contract_name(info) or info.erc20_symbol
        return info.erc20_symbol or info.contract_name

    @staticmethod
    def _contract_name(info: AddressInfo) -> Optional[str]:
        # keep the proxy's own name, fall back to the implementation's
        return info.contract_name or info.implementation_name

    def _descriptor(self, info: AddressInfo) -> Optional[ContractDescriptor]:
        abis = abis_for(info)
        if not abis:
            return None
        descriptor = ContractDescriptor.from_abi(info.address, abis[0], self.provider)
        for abi in abis[1:]:
            descriptor = descriptor.merged_with(ContractDescriptor.from_abi(info.address, abi, self.provider))
        return descriptor

    async def _discover_links(self, descriptor: ContractDescriptor) -> List[Link]:
        candidates = [
            f for f in descriptor.list_zero_arg_read_functions()
            if any(p.type in ADDRESS_TYPES for p in f.outputs)
        ]
        results = await asyncio.gather(*(self._probe(descriptor, f) for f in candidates))
        return [link for links in results for link in links]

    async def _probe(self, descriptor: ContractDescriptor, func: AbiFunction) -> List[Link]:
        """Call one function and turn its address outputs into links."""
        try:
            outputs = await descriptor.call_function(func)
        except Exception as e:
            logger.warning("error calling %s %s 0x%s: %s", descriptor.address, func.name, func.selector.hex(), e)
            return []

        links: List[Link] = []

        def add(value, name: str):
            to = normalise_address(value)
            if to is not None:
                links.append(Link(from_address=descriptor.address, to_address=to, name=name))

        single = len(func.outputs) == 1
        for index, param in enumerate(func.outputs):
            output_index = None if single else index
            if param.type == "address":
                add(outputs[index], func.output_name(output_index))
            elif param.type == "address[]":
                for array_index, value in enumerate(outputs[index]):
                    add(value, func.output_name(output_index, array_index))
        return links


def make_identifier(name: str) -> str:
    """Turn a display name into an identifier: ``[A-Za-z0-9$_]`` only, no leading digit."""
    result = re.sub(r"\s+", "_", name)
    result = re.sub(r"[^a-zA-Z0-9$_]", "$", result)
    if re.match(r"^\d", result):
        result = "$" + result
    return result


def assign_unique_names(context: GraphContext) -> None:
    """Make node display names unique identifiers."""
    by_name: Dict[str, List[Node]] = {}
    for node in context.nodes.values():
        node.display_name = make_identifier(node.display_name)
        by_name.setdefault(node.display_name, []).append(node)

    for name, nodes in by_name.items():
        if len(nodes) < 2:
            continue
        unique = 0
        for node in nodes:
            back_links = context.back_links.get(node.address, [])
            index = re.search(r"\[(\d+)\]$", back_links[0].name) if len(back_links) == 1 else None
            if index:
                node.display_name += f"_at_{index.group(1)}"
            else:
                node.display_name += f"__{unique}"
                unique += 1
