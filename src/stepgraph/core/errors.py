"""Error taxonomy for graph execution.

Every engine-level failure derives from ``GraphError`` and carries enough
context (thread id, step, node, channel) to diagnose a failed run:

- SchemaViolation: update targets an undeclared channel or fails validation
- ConcurrentUpdateConflict: several writers hit a channel without a reducer
- StepLimitExceeded: the run would pass its ``recursion_limit``
- NodeExecutionError: a node raised and did not recover
- SerializationError: a checkpoint could not be written or read
- CheckpointNotFound: a thread or checkpoint id does not resolve
- GraphValidationError: the graph, a route, or a config is malformed

``GraphInterrupt`` and ``ParentCommand`` are control-flow signals used
internally by the engine and never reach callers.
"""

from typing import Any, Dict, Optional, Sequence


class GraphError(Exception):
    """Base class for engine errors with execution context."""

    def __init__(
        self,
        message: str,
        *,
        thread_id: Optional[str] = None,
        step: Optional[int] = None,
        node: Optional[str] = None,
        channel: Optional[str] = None,
    ):
        self.message = message
        self.thread_id = thread_id
        self.step = step
        self.node = node
        self.channel = channel
        super().__init__(message)

    @property
    def context(self) -> Dict[str, Any]:
        """Non-empty context fields."""
        return {
            key: value
            for key, value in (
                ("thread_id", self.thread_id),
                ("step", self.step),
                ("node", self.node),
                ("channel", self.channel),
            )
            if value is not None
        }

    def with_context(self, **context: Any) -> "GraphError":
        """Fill in context fields that are not set yet and return self."""
        for key, value in context.items():
            if getattr(self, key, None) is None and value is not None:
                setattr(self, key, value)
        return self

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class InvalidUpdateError(GraphError):
    """An update could not be merged into the state."""


class SchemaViolation(InvalidUpdateError):
    """Update targets an undeclared channel or violates a channel's type."""


class ConcurrentUpdateConflict(InvalidUpdateError):
    """Two or more writers updated a channel that has no reducer."""

    def __init__(self, channel: str, writers: Sequence[str], **context: Any):
        self.writers = list(writers)
        super().__init__(
            f"Channel '{channel}' received {len(self.writers)} concurrent writes "
            f"from {self.writers} but has no reducer",
            channel=channel,
            **context,
        )


class StepLimitExceeded(GraphError):
    """The run would execute more supersteps than ``recursion_limit`` allows."""

    def __init__(self, limit: int, **context: Any):
        self.limit = limit
        super().__init__(
            f"Recursion limit of {limit} supersteps reached without hitting a stop condition",
            **context,
        )


GraphRecursionError = StepLimitExceeded


class NodeExecutionError(GraphError):
    """A node raised an exception it did not handle."""


class SerializationError(GraphError):
    """State could not be persisted to, or read back from, a checkpoint store."""


class CheckpointNotFound(GraphError, LookupError):
    """Requested thread or checkpoint does not exist."""


class GraphValidationError(GraphError, ValueError):
    """The graph structure, a routing decision or a run config is invalid."""


class GraphInterrupt(Exception):
    """Raised inside a task when a node asks to pause for external input."""

    def __init__(self, interrupts: Sequence[Any]):
        self.interrupts = list(interrupts)
        super().__init__(self.interrupts)


class ParentCommand(Exception):
    """Carries a ``Command(graph=PARENT)`` out of a subgraph run."""

    def __init__(self, command: Any):
        self.command = command
        super().__init__(command)
