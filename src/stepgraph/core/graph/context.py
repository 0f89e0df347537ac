"""Per-task runtime context.

The engine binds a ``TaskContext`` to a context variable while a node runs.
Node code reaches it through two functions:

- ``interrupt(value)``: pause the run for external input. On resume the node
  runs again from its beginning and the n-th ``interrupt`` call returns the
  n-th resume value instead of pausing.
- ``get_stream_writer()``: emit chunks to ``stream_mode="custom"`` consumers.
"""

from contextvars import ContextVar
from typing import Any, Callable, List, Optional

from stepgraph.core.config import RunConfig
from stepgraph.core.errors import GraphInterrupt
from stepgraph.core.graph.types import Interrupt


def _discard(chunk: Any) -> None:
    return None


class TaskContext:
    """Runtime data of one executing task."""

    def __init__(
        self,
        task_id: str,
        node: str,
        config: RunConfig,
        resume: Optional[List[Any]] = None,
        writer: Optional[Callable[[Any], None]] = None,
        checkpointer: Any = None,
    ):
        self.task_id = task_id
        self.node = node
        self.config = config
        self.resume = list(resume or [])
        self.writer = writer or _discard
        self.checkpointer = checkpointer
        self.interrupt_index = 0

    def next_interrupt_id(self) -> str:
        return f"{self.task_id}:{self.interrupt_index}"


_current_task: ContextVar[Optional[TaskContext]] = ContextVar("stepgraph_task", default=None)


def get_task_context() -> Optional[TaskContext]:
    return _current_task.get()


def bind_task_context(context: TaskContext):
    """Bind ``context`` in the current execution context; returns a reset token."""
    return _current_task.set(context)


def interrupt(value: Any = None) -> Any:
    """Pause the run and surface ``value`` to the caller.

    Returns the resume value supplied through ``Command(resume=...)`` once the
    run is resumed. Code before the call runs again on resume.

    Raises:
        RuntimeError: If called outside a running node
    """
    context = _current_task.get()
    if context is None:
        raise RuntimeError("interrupt() can only be called from inside a graph node")

    interrupt_id = context.next_interrupt_id()
    index = context.interrupt_index
    context.interrupt_index += 1
    if index < len(context.resume):
        return context.resume[index]

    raise GraphInterrupt([
        Interrupt(value=value, id=interrupt_id, node=context.node, task_id=context.task_id)
    ])


def get_stream_writer() -> Callable[[Any], None]:
    """Writer for ``custom`` stream chunks; a no-op outside a streaming run."""
    context = _current_task.get()
    if context is None:
        return _discard
    return context.writer
