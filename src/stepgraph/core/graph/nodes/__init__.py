"""Node package initialization.

Exposes node types and helpers for building workflows.
"""

from stepgraph.core.graph.nodes.base.node import (
    Node,
    FunctionNode,
    error_handler,
)
from stepgraph.core.graph.nodes.subgraph import SubgraphNode

__all__ = [
    # Base node types
    "Node",
    "FunctionNode",
    "SubgraphNode",

    # Decorators and helpers
    "error_handler",
]
