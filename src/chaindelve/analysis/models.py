"""
Data models for the discovered address graph.

A node is one ledger address; links are named references from a contract to
the addresses returned by its parameterless read functions.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum


class NodeKind(Enum):
    """Classification of a discovered address."""
    CONTRACT = "contract"
    ADDRESS = "simpleAddress"
    INVALID = "invalid"


@dataclass
class ContractRef:
    """An implementation contract behind a proxy."""
    address: str
    name: Optional[str] = None


@dataclass
class TokenInfo:
    symbol: Optional[str] = None
    name: Optional[str] = None


@dataclass
class Link:
    """A directed edge named after the read function that produced it."""
    from_address: str
    to_address: str
    name: str


@dataclass
class Node:
    """A discovered ledger address."""
    address: str
    kind: NodeKind
    display_name: str

    # Contract information
    contract_name: Optional[str] = None
    token: Optional[TokenInfo] = None
    implementations: List[ContractRef] = field(default_factory=list)  # most recent first
    links: List[Link] = field(default_factory=list)

    # Recorded but not traversed through
    stopper: bool = False

    # Creation details (only when requested)
    creator: Optional[str] = None
    created_at: Optional[int] = None

    @property
    def is_contract(self) -> bool:
        return self.kind == NodeKind.CONTRACT

    @property
    def implementation(self) -> Optional[ContractRef]:
        return self.implementations[0] if self.implementations else None

    @property
    def contract_label(self) -> str:
        """The contract type: implementation name for proxies, else the contract name."""
        if self.implementation and self.implementation.name:
            return self.implementation.name
        if self.contract_name:
            return self.contract_name
        return self.kind.value

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "address": self.address,
            "kind": self.kind.value,
            "name": self.display_name,
            "contract": self.contract_label,
        }
        if self.token:
            result["token"] = {"symbol": self.token.symbol, "name": self.token.name}
        if self.implementations:
            result["implementations"] = [{"address": c.address, "name": c.name} for c in self.implementations]
        if self.stopper:
            result["stopper"] = True
        if self.creator:
            result["creator"] = self.creator
        if self.created_at is not None:
            result["created_at"] = self.created_at
        if self.links:
            result["links"] = [{"name": link.name, "to": link.to_address} for link in self.links]
        return result


def short_address(address: str) -> str:
    return address[:5] + ".." + address[-3:]
