"""Graph Base Classes

This module defines the builder for state graphs. A StateGraph:
1. Declares a typed shared state (TypedDict, annotated class or Pydantic model)
2. Registers named nodes (functions, Node subclasses or compiled subgraphs)
3. Connects them with static edges and conditional branches
4. Compiles into an immutable, executable CompiledGraph

Example:
    ```python
    class Essay(TypedDict):
        topic: str
        drafts: Annotated[list, append]
        score: float

    graph = StateGraph(Essay)
    graph.add_node("draft", draft)
    graph.add_node("grade", grade)

    graph.add_edge(START, "draft")
    graph.add_edge("draft", "grade")
    graph.add_conditional_edges(
        "grade",
        lambda s: "done" if s["score"] > 0.8 else "retry",
        {"done": END, "retry": "draft"},
    )

    app = graph.compile()
    result = await app.ainvoke({"topic": "supersteps"})
    ```
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from stepgraph.core.errors import GraphValidationError
from stepgraph.core.graph.compiled import CompiledGraph
from stepgraph.core.graph.constants import END, RESERVED_NAMES, START
from stepgraph.core.graph.nodes.base.node import FunctionNode, Node
from stepgraph.core.graph.nodes.subgraph import SubgraphNode
from stepgraph.core.graph.reducers import Reducer
from stepgraph.core.graph.routing import PathMap, RoutingTable, make_branch
from stepgraph.core.graph.state import StateSchema
from stepgraph.core.logging import LogComponent, StepLoggingConfig, get_logger

NodeLike = Union[Node, Callable[..., Any], CompiledGraph]


class StateGraph(BaseModel):
    """Builder for a graph of nodes over a typed shared state.

    The builder is mutable; ``compile()`` validates it and returns an
    immutable CompiledGraph. Registration methods return the builder so
    calls can be chained.

    Attributes:
        state_schema: State type (TypedDict, annotated class or BaseModel)
        reducers: Extra reducers by channel, on top of ``Annotated`` ones
        nodes: Registered nodes by name, in registration order
        logging_config: Controls logging verbosity
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    state_schema: Any
    reducers: Dict[str, Reducer] = Field(default_factory=dict)
    nodes: Dict[str, Node] = Field(default_factory=dict)
    logging_config: StepLoggingConfig = Field(default_factory=StepLoggingConfig)
    _schema: StateSchema = PrivateAttr()
    _routing: RoutingTable = PrivateAttr()
    _logger: logging.Logger = PrivateAttr()

    def __init__(self, state_schema: Any = None, **data):
        if state_schema is not None:
            data["state_schema"] = state_schema
        super().__init__(**data)
        self._schema = StateSchema(self.state_schema, self.reducers)
        self._routing = RoutingTable()
        self._logger = get_logger(LogComponent.GRAPH)

    @property
    def edges(self) -> Dict[str, List[str]]:
        return self._routing.edges

    @property
    def branches(self):
        return self._routing.branches

    def _log_transition(self, message: str) -> None:
        if self.logging_config.show_node_transitions:
            self._logger.info(message)
        else:
            self._logger.debug(message)

    def add_node(
        self,
        node: Union[str, NodeLike],
        action: Optional[NodeLike] = None,
        *,
        metadata: Optional[Dict[str, Any]] = None,
        destinations: Sequence[str] = (),
    ) -> "StateGraph":
        """Register a node with the graph.

        Args:
            node: Node name (with ``action``), a Node instance, or a function
                whose ``__name__`` becomes the node name
            action: Function or CompiledGraph executed by the named node
            metadata: Optional node metadata
            destinations: Nodes this node may reach through ``Command(goto=...)``

        Raises:
            ValueError: If the name is taken or reserved, or the node fails validation
        """
        if isinstance(node, Node):
            if action is not None:
                raise ValueError("Pass either a Node instance or a name and an action, not both")
            instance = node
        else:
            if isinstance(node, str):
                name = node
            elif action is None and callable(node) and not isinstance(node, CompiledGraph):
                name, action = getattr(node, "__name__", ""), node
            else:
                raise ValueError("add_node expects a Node, a function, or a name and an action")

            if not name:
                raise ValueError("Node must have a name")
            if name in RESERVED_NAMES:
                raise ValueError(f"'{name}' is a reserved name and cannot be used as a node name")
            if action is None:
                raise ValueError(f"Node {name} needs an action")

            fields = dict(id=name, metadata=dict(metadata or {}), destinations=tuple(destinations))
            if isinstance(action, CompiledGraph):
                instance = SubgraphNode(
                    graph=action, parent_channels=tuple(self._schema.channels), **fields
                )
            elif isinstance(action, Node):
                raise ValueError("Register Node instances directly with add_node(node)")
            elif callable(action):
                instance = FunctionNode(func=action, **fields)
            else:
                raise ValueError(f"Action for node {name} must be callable")

        if instance.id in self.nodes:
            raise ValueError(f"Node '{instance.id}' is already registered")
        if not instance.validate():
            raise ValueError(f"Node {instance.id} failed validation")

        self.nodes[instance.id] = instance
        self._logger.info(f"Added node: {instance.id} of type {type(instance).__name__}")
        return self

    def add_edge(self, start: str, end: str) -> "StateGraph":
        """Add a static edge; several edges from one node run in parallel.

        Raises:
            ValueError: If the edge leaves END or enters START
        """
        if start == END:
            raise ValueError("END cannot be the source of an edge")
        if end == START:
            raise ValueError("START cannot be the target of an edge")
        self._routing.add_edge(start, end)
        self._log_transition(f"Added edge: {start} --> {end}")
        return self

    def add_conditional_edges(
        self,
        source: str,
        path: Callable[..., Any],
        path_map: PathMap = None,
    ) -> "StateGraph":
        """Route from ``source`` by calling ``path`` on the updated state.

        Args:
            source: Node the branch leaves from (or START)
            path: Router returning a key, node name, Send, or a list of them
            path_map: Dict of router keys to node names, or a list of the
                node names the router may return
        """
        if source == END:
            raise ValueError("END cannot be the source of an edge")
        branch = make_branch(source, path, path_map)
        self._routing.add_branch(branch)
        self._log_transition(
            f"Added branch: {source} --[{branch.name}]--> {branch.possible_destinations() or '*'}"
        )
        return self

    def set_entry_point(self, node_id: str) -> "StateGraph":
        """Start runs at ``node_id``."""
        return self.add_edge(START, node_id)

    def set_conditional_entry_point(
        self,
        path: Callable[..., Any],
        path_map: PathMap = None,
    ) -> "StateGraph":
        """Pick the first node(s) by routing the input state."""
        return self.add_conditional_edges(START, path, path_map)

    def set_finish_point(self, node_id: str) -> "StateGraph":
        """End runs after ``node_id``."""
        return self.add_edge(node_id, END)

    def chain(self, nodes: Sequence[Union[Node, Callable[..., Any]]]) -> "StateGraph":
        """Register a sequence of nodes and connect them in order.

        The first node becomes the entry point if none is set yet.
        """
        names = []
        for node in nodes:
            self.add_node(node)
            names.append(node.id if isinstance(node, Node) else node.__name__)

        for source, target in zip(names, names[1:]):
            self.add_edge(source, target)

        # Set first node as default entry if no entry points exist
        if names and START not in self._routing.sources():
            self.set_entry_point(names[0])
        return self

    def _reachable(self) -> Optional[Set[str]]:
        """Nodes reachable from START, or None if a router is open-ended."""
        seen: Set[str] = set()
        frontier = [START]
        while frontier:
            source = frontier.pop()
            targets = list(self._routing.edges.get(source, []))
            for branch in self._routing.branches.get(source, []):
                possible = branch.possible_destinations()
                if possible is None:
                    return None
                targets.extend(possible)
            if source in self.nodes:
                targets.extend(self.nodes[source].destinations)
            for target in targets:
                if target in self.nodes and target not in seen:
                    seen.add(target)
                    frontier.append(target)
        return seen

    def validate(self) -> List[str]:
        """Validate the graph configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors: List[str] = []

        # Check for empty graph
        if not self.nodes:
            errors.append("Graph has no nodes")
            return errors

        if START not in self._routing.sources():
            errors.append("Graph has no entry point; add an edge from START")

        known = set(self.nodes) | {START, END}
        for source, targets in self._routing.edges.items():
            if source not in known:
                errors.append(f"Edge starts at unknown node: {source}")
            for target in targets:
                if target not in known:
                    errors.append(f"Edge {source} --> {target} references unknown node: {target}")

        for source, branches in self._routing.branches.items():
            if source not in known:
                errors.append(f"Branch starts at unknown node: {source}")
            for branch in branches:
                for target in branch.possible_destinations() or ():
                    if target not in known:
                        errors.append(
                            f"Branch {branch.name} from {source} references unknown node: {target}"
                        )

        for node_id, node in self.nodes.items():
            if not node.validate():
                errors.append(f"Node {node_id} failed validation")
            for target in node.destinations:
                if target not in known:
                    errors.append(f"Node {node_id} declares unknown destination: {target}")

        reachable = self._reachable()
        if reachable is not None:
            for node_id in self.nodes:
                if node_id not in reachable:
                    # Command(goto=...) without declared destinations can still reach it
                    self._logger.warning(f"Node {node_id} is not reachable from START through edges")

        return errors

    def compile(
        self,
        checkpointer: Any = None,
        interrupt_before: Sequence[str] = (),
        interrupt_after: Sequence[str] = (),
        name: Optional[str] = None,
    ) -> CompiledGraph:
        """Validate the builder and freeze it into a CompiledGraph.

        Args:
            checkpointer: CheckpointStore used for persistence, interrupts and time travel
            interrupt_before: Nodes to pause before (continue with ``None`` input)
            interrupt_after: Nodes to pause after
            name: Graph name for logs and rendering

        Raises:
            GraphValidationError: If the graph is invalid
        """
        errors = self.validate()
        for node_id in (*interrupt_before, *interrupt_after):
            if node_id not in self.nodes:
                errors.append(f"Breakpoint references unknown node: {node_id}")
        if errors:
            raise GraphValidationError("Invalid graph: " + "; ".join(errors))

        graph_name = name or getattr(self.state_schema, "__name__", "graph")
        compiled = CompiledGraph(
            schema=self._schema,
            nodes=self.nodes,
            routing=self._routing.copy(),
            checkpointer=checkpointer,
            interrupt_before=interrupt_before,
            interrupt_after=interrupt_after,
            name=graph_name,
            logging_config=self.logging_config,
        )
        self._logger.info(f"Compiled graph '{graph_name}' with {len(self.nodes)} nodes")
        return compiled
