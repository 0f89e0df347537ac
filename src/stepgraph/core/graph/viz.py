"""Graph visualization tools.

Renders a compiled graph as a Mermaid flowchart: static edges are solid,
conditional branches and ``Command`` destinations are dotted and labelled.
"""

import re
from typing import TYPE_CHECKING, List, Optional, Set

from stepgraph.core.graph.constants import END, START
from stepgraph.core.graph.types import StateSnapshot

if TYPE_CHECKING:
    from stepgraph.core.graph.compiled import CompiledGraph


def _node_id(name: str) -> str:
    return re.sub(r"\W", "_", name)


class GraphVisualizer:
    """Visualize graph structure and execution."""

    def __init__(self, graph: "CompiledGraph"):
        self.graph = graph

    def _declare(self, highlight: Set[str]) -> List[str]:
        lines = [
            f"\t{_node_id(START)}([<p>{START}</p>]):::first",
        ]
        for name in self.graph.node_order:
            style = ":::active" if name in highlight else ""
            lines.append(f"\t{_node_id(name)}({name}){style}")
        lines.append(f"\t{_node_id(END)}([<p>{END}</p>]):::last")
        return lines

    def _edges(self) -> List[str]:
        lines = []
        routing = self.graph.routing
        for source, targets in routing.edges.items():
            for target in targets:
                lines.append(f"\t{_node_id(source)} --> {_node_id(target)};")

        for source, branches in routing.branches.items():
            for branch in branches:
                if branch.path_map is not None:
                    for key, target in branch.path_map.items():
                        label = f"|{key}|" if str(key) != target else ""
                        lines.append(f"\t{_node_id(source)} -.->{label} {_node_id(target)};")
                else:
                    targets = branch.possible_destinations() or [
                        *self.graph.node_order, END
                    ]
                    for target in targets:
                        lines.append(f"\t{_node_id(source)} -.-> {_node_id(target)};")

        for name in self.graph.node_order:
            for target in self.graph.nodes[name].destinations:
                lines.append(f"\t{_node_id(name)} -.-> {_node_id(target)};")
        return lines

    def draw_mermaid(self, highlight: Optional[Set[str]] = None) -> str:
        """Mermaid flowchart source for the graph."""
        lines = ["graph TD;"]
        lines.extend(self._declare(highlight or set()))
        lines.extend(self._edges())
        lines.extend([
            "\tclassDef default fill:#f2f0ff,line-height:1.2",
            "\tclassDef first fill-opacity:0",
            "\tclassDef last fill:#bfb6fc",
            "\tclassDef active fill:#fde68a,stroke:#b45309",
        ])
        return "\n".join(lines) + "\n"

    def render_graph(self) -> str:
        return self.draw_mermaid()

    def render_execution(self, snapshot: StateSnapshot) -> str:
        """Mermaid source with the snapshot's pending nodes highlighted."""
        return self.draw_mermaid(highlight=set(snapshot.next))
