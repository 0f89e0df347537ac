"""Base node class for the graph system.

This module defines the Node abstraction for the graph framework. A Node is a
named unit of computation: it receives a copy of the committed state (or a
``Send`` payload) plus the run config, and returns a partial state update or
a ``Command``. Nodes are validated via Pydantic and execute asynchronously.

Typical Usage:
    - Register a plain function: ``graph.add_node("summarize", summarize)``
    - Or subclass Node and override ``process(state, config)``
    - Return a dict to update channels, or ``Command(update=..., goto=...)``
      to pick the successor explicitly
"""

import asyncio
import inspect
from functools import wraps
from typing import Any, Callable, Dict, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from stepgraph.core.config import RunConfig
from stepgraph.core.errors import (
    GraphInterrupt,
    GraphValidationError,
    ParentCommand,
    SchemaViolation,
)
from stepgraph.core.graph.constants import RESERVED_NAMES
from stepgraph.core.graph.types import Command
from stepgraph.core.logging import LogComponent, get_logger

# Get logger for node operations
logger = get_logger(LogComponent.NODES)


def accepts_config(func: Callable) -> bool:
    """Whether ``func`` takes a second (config) argument.

    A parameter named ``config``, a required second positional parameter or
    ``*args`` opt in. A defaulted second parameter (``lambda s, name=name``)
    is left alone.
    """
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return False
    params = list(signature.parameters.values())
    positional = [p for p in params if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)]
    if any(p.name == "config" for p in positional):
        return True
    if any(p.kind == p.VAR_POSITIONAL for p in params):
        return True
    return len(positional) >= 2 and positional[1].default is inspect.Parameter.empty


async def call_maybe_async(func: Callable, *args: Any) -> Any:
    """Await async callables; run sync ones in a worker thread."""
    if inspect.iscoroutinefunction(func) or inspect.iscoroutinefunction(
        getattr(func, "__call__", None)
    ):
        return await func(*args)
    result = await asyncio.to_thread(func, *args)
    if inspect.isawaitable(result):
        result = await result
    return result


class Node(BaseModel):
    """
    Abstract base node for graph operations.

    Attributes:
        id: Unique node identifier
        metadata: Optional node metadata
        destinations: Nodes this node may route to via ``Command(goto=...)``;
            used for validation and rendering only
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = Field(..., description="Unique identifier for this node")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    destinations: Tuple[str, ...] = Field(default=())

    @model_validator(mode='after')
    def validate_node(self) -> 'Node':
        """Validate node configuration."""
        if not self.id:
            raise ValueError("Node must have an ID")
        if self.id in RESERVED_NAMES:
            raise ValueError(f"'{self.id}' is a reserved name and cannot be used as a node ID")
        return self

    async def process(self, state: Any, config: RunConfig) -> Any:
        """Process node logic. Must be implemented by subclasses."""
        raise NotImplementedError("Subclasses must implement process()")

    def validate(self) -> bool:
        """
        Validate node configuration.

        Override in subclasses if additional checks are required.

        Returns:
            True if the node is considered valid.
        """
        return True

    async def invoke(self, state: Any, config: RunConfig) -> Command:
        """Run ``process`` and normalize its result into a Command."""
        if accepts_config(self.process):
            result = await self.process(state, config)
        else:
            result = await self.process(state)
        return self.to_command(result)

    def to_command(self, result: Any) -> Command:
        if isinstance(result, Command):
            if result.has_resume:
                raise GraphValidationError(
                    "Command(resume=...) is run input and cannot be returned by a node",
                    node=self.id,
                )
            return result
        if result is None or isinstance(result, (dict, BaseModel)) or hasattr(result, "keys"):
            return Command(update=result)
        raise SchemaViolation(
            f"Node returned {type(result).__name__}; expected a mapping, a model, a Command or None",
            node=self.id,
        )

    # Helper methods for node configuration
    def set_metadata(self, key: str, value: Any) -> None:
        """Set metadata value."""
        self.metadata[key] = value

    def get_metadata(self, key: str, default: Any = None) -> Any:
        """Get metadata value."""
        return self.metadata.get(key, default)


class FunctionNode(Node):
    """Node wrapping a plain sync or async callable.

    The callable is called as ``func(state)`` or ``func(state, config)``
    depending on its signature.
    """
    func: Callable[..., Any] = Field(..., description="Callable executed by this node")

    @model_validator(mode='after')
    def validate_func(self) -> "FunctionNode":
        if not callable(self.func):
            raise ValueError(f"FunctionNode {self.id} requires a callable")
        return self

    async def process(self, state: Any, config: RunConfig) -> Any:
        args = (state, config) if accepts_config(self.func) else (state,)
        return await call_maybe_async(self.func, *args)


def error_handler(
    goto: Union[str, Tuple[str, ...], None] = None,
    channel: Optional[str] = "error",
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
):
    """Decorator converting a node's failures into a state update and a route.

    The engine never recovers node errors by itself; wrap a node function with
    this decorator to record the error in ``channel`` and continue at ``goto``
    instead of failing the run.

    Example:
        @error_handler(goto="fallback", channel="last_error")
        async def fetch(state):
            return {"page": await download(state["url"])}
    """
    def _recover(name: str, exc: BaseException) -> Command:
        if isinstance(exc, (GraphInterrupt, ParentCommand)):
            raise exc
        logger.warning(f"Node {name} recovered from {type(exc).__name__}: {exc}")
        update = {channel: f"{type(exc).__name__}: {exc}"} if channel else None
        return Command(update=update, goto=goto)

    def decorator(func: Callable) -> Callable:
        name = getattr(func, "__name__", repr(func))

        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except exceptions as exc:
                    return _recover(name, exc)
            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except exceptions as exc:
                return _recover(name, exc)
        return wrapper

    return decorator
