"""Graph package initialization.

Exposes core graph components and helpers for building workflows.
"""

from stepgraph.core.graph.base import StateGraph
from stepgraph.core.graph.compiled import CompiledGraph
from stepgraph.core.graph.constants import END, INTERRUPT_KEY, START
from stepgraph.core.graph.context import get_stream_writer, interrupt
from stepgraph.core.graph.message import (
    REMOVE_ALL_MESSAGES,
    Message,
    MessagesState,
    RemoveMessage,
    add_messages,
)
from stepgraph.core.graph.nodes import FunctionNode, Node, SubgraphNode, error_handler
from stepgraph.core.graph.reducers import (
    ReducerRegistry,
    add,
    append,
    merge_dicts,
    overwrite,
    union,
)
from stepgraph.core.graph.state import State, StateSchema
from stepgraph.core.graph.types import (
    Command,
    Interrupt,
    RunStatus,
    Send,
    StateSnapshot,
    StreamMode,
)
from stepgraph.core.graph.viz import GraphVisualizer

__all__ = [
    # Core classes
    "StateGraph",
    "CompiledGraph",
    "State",
    "StateSchema",
    "Node",
    "FunctionNode",
    "SubgraphNode",
    "GraphVisualizer",

    # Markers and directives
    "START",
    "END",
    "INTERRUPT_KEY",
    "Command",
    "Send",
    "Interrupt",
    "RunStatus",
    "StreamMode",
    "StateSnapshot",

    # Reducers and messages
    "ReducerRegistry",
    "overwrite",
    "append",
    "add",
    "union",
    "merge_dicts",
    "Message",
    "RemoveMessage",
    "MessagesState",
    "add_messages",
    "REMOVE_ALL_MESSAGES",

    # Decorators and helpers
    "interrupt",
    "get_stream_writer",
    "error_handler",
]
