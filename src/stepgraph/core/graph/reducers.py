"""Reducers and the per-graph reducer registry.

A reducer merges a channel's current value with one incoming write:
``reducer(current, update) -> new``. Channels declare reducers through
``typing.Annotated``:

    class State(TypedDict):
        items: Annotated[list, append]
        total: Annotated[int, add]
        status: str                     # no reducer: overwrite

Reducers run once per write, folded in task order. Within a superstep task
order is not something node authors should rely on, so reducers should be
commutative or order-tolerant (append, add, union).
"""

import operator
from typing import Any, Callable, Dict, Iterable

Reducer = Callable[[Any, Any], Any]


def overwrite(current: Any, update: Any) -> Any:
    """Default reducer: the update replaces the current value."""
    return update


def append(current: Any, update: Any) -> list:
    """Concatenate lists; a non-list update is appended as one item."""
    merged = list(current or [])
    if isinstance(update, (list, tuple)):
        merged.extend(update)
    else:
        merged.append(update)
    return merged


def add(current: Any, update: Any) -> Any:
    """``current + update`` (numbers, lists, strings)."""
    if current is None:
        return update
    return operator.add(current, update)


def union(current: Any, update: Any) -> set:
    """Set union; a scalar update is added as one element."""
    merged = set(current or ())
    if isinstance(update, (set, frozenset, list, tuple)):
        merged.update(update)
    else:
        merged.add(update)
    return merged


def merge_dicts(current: Any, update: Any) -> Dict[str, Any]:
    """Shallow dict merge, right-biased."""
    merged = dict(current or {})
    merged.update(update or {})
    return merged


class ReducerRegistry:
    """Maps channel names to reducers; unregistered channels overwrite."""

    def __init__(self, reducers: Dict[str, Reducer] = None):
        self._reducers: Dict[str, Reducer] = {}
        self._frozen = False
        for channel, reducer in (reducers or {}).items():
            self.register(channel, reducer)

    def register(self, channel: str, reducer: Reducer) -> None:
        """Bind ``reducer`` to ``channel``.

        Raises:
            ValueError: If the registry is frozen
            TypeError: If reducer is not callable
        """
        if self._frozen:
            raise ValueError(f"Cannot register reducer for '{channel}': registry is frozen")
        if not callable(reducer):
            raise TypeError(f"Reducer for '{channel}' must be callable, got {type(reducer).__name__}")
        self._reducers[channel] = reducer

    def resolve(self, channel: str) -> Reducer:
        """Return the channel's reducer, or ``overwrite``."""
        return self._reducers.get(channel, overwrite)

    def has_reducer(self, channel: str) -> bool:
        return channel in self._reducers

    def freeze(self) -> None:
        self._frozen = True

    def channels(self) -> Iterable[str]:
        return self._reducers.keys()

    def __contains__(self, channel: str) -> bool:
        return channel in self._reducers
