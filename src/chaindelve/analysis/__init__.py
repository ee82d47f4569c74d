"""
Discovery of the on-chain address graph.
"""

from .models import ContractRef, Link, Node, NodeKind, TokenInfo, short_address
from .graph import GraphBuilder, GraphContext, assign_unique_names, make_identifier, normalise_address

__all__ = [
    "ContractRef",
    "Link",
    "Node",
    "NodeKind",
    "TokenInfo",
    "short_address",
    "GraphBuilder",
    "GraphContext",
    "assign_unique_names",
    "make_identifier",
    "normalise_address",
]
