"""Edge / routing table.

Two kinds of edges leave a node:

- static edges: ``add_edge("a", "b")`` always schedules ``b`` after ``a``;
  several static edges from one source fan out in parallel
- branches: ``add_conditional_edges("a", router, path_map)``; the router sees
  the post-update state and returns a destination, a ``Send``, or a list of
  them. ``path_map`` translates router keys into destinations, like the
  transition keys of a state machine:

      graph.add_conditional_edges(
          "grade",
          lambda s: "pass" if s["score"] > 0.8 else "retry",
          {"pass": "publish", "retry": "draft"},
      )
"""

from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from stepgraph.core.config import RunConfig
from stepgraph.core.errors import GraphValidationError
from stepgraph.core.graph.constants import END
from stepgraph.core.graph.nodes.base.node import accepts_config, call_maybe_async
from stepgraph.core.graph.types import Goto, Send

PathMap = Union[Dict[Hashable, str], List[str], None]


class Branch(BaseModel):
    """A conditional edge."""
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    source: str
    router: Callable[..., Any]
    path_map: Optional[Dict[Any, str]] = None
    allowed: Optional[List[str]] = Field(
        default=None,
        description="Allowed destinations when path_map was given as a list"
    )

    @property
    def name(self) -> str:
        return getattr(self.router, "__name__", type(self.router).__name__)

    def possible_destinations(self) -> Optional[List[str]]:
        """Destinations known statically, or None if any node is possible."""
        if self.path_map is not None:
            return list(dict.fromkeys(self.path_map.values()))
        return self.allowed

    async def route(self, state: Any, config: RunConfig) -> List[Goto]:
        """Call the router and translate its answer into destinations."""
        args = (state, config) if accepts_config(self.router) else (state,)
        result = await call_maybe_async(self.router, *args)
        if result is None:
            raise GraphValidationError(
                f"Router '{self.name}' returned None; return END to stop",
                node=self.source,
            )
        if isinstance(result, (str, Send)) or not isinstance(result, (list, tuple, set)):
            result = [result]
        return [self._translate(item) for item in result]

    def _translate(self, item: Any) -> Goto:
        if isinstance(item, Send):
            return item
        if self.path_map is not None:
            if item not in self.path_map:
                raise GraphValidationError(
                    f"Router '{self.name}' returned {item!r}, which is not in its path map "
                    f"{list(self.path_map)}",
                    node=self.source,
                )
            return self.path_map[item]
        if not isinstance(item, str):
            raise GraphValidationError(
                f"Router '{self.name}' returned {item!r}; expected a node name or Send",
                node=self.source,
            )
        if self.allowed is not None and item not in self.allowed and item != END:
            raise GraphValidationError(
                f"Router '{self.name}' returned '{item}', expected one of {self.allowed}",
                node=self.source,
            )
        return item


def make_branch(source: str, router: Callable[..., Any], path_map: PathMap = None) -> Branch:
    if not callable(router):
        raise TypeError(f"Router for '{source}' must be callable")
    if path_map is None:
        return Branch(source=source, router=router)
    if isinstance(path_map, dict):
        return Branch(source=source, router=router, path_map=dict(path_map))
    return Branch(source=source, router=router, allowed=list(path_map))


class RoutingTable:
    """Static edges and branches, keyed by source node."""

    def __init__(self):
        self.edges: Dict[str, List[str]] = {}
        self.branches: Dict[str, List[Branch]] = {}
        self._frozen = False

    def add_edge(self, source: str, destination: str) -> None:
        self._check_mutable()
        targets = self.edges.setdefault(source, [])
        if destination not in targets:
            targets.append(destination)

    def add_branch(self, branch: Branch) -> None:
        self._check_mutable()
        self.branches.setdefault(branch.source, []).append(branch)

    def freeze(self) -> None:
        self._frozen = True

    def _check_mutable(self) -> None:
        if self._frozen:
            raise GraphValidationError("Routing table is frozen after compile")

    def copy(self) -> "RoutingTable":
        table = RoutingTable()
        table.edges = {source: list(targets) for source, targets in self.edges.items()}
        table.branches = {source: list(branches) for source, branches in self.branches.items()}
        return table

    def sources(self) -> Sequence[str]:
        return list(dict.fromkeys([*self.edges, *self.branches]))

    async def resolve(self, source: str, state: Any, config: RunConfig) -> List[Goto]:
        """Successors of ``source`` for the given post-update state."""
        targets: List[Goto] = list(self.edges.get(source, []))
        for branch in self.branches.get(source, []):
            targets.extend(await branch.route(state, config))
        return targets
