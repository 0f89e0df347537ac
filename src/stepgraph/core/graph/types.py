"""Value types exchanged between nodes, the engine and callers.

- Send: a fan-out destination carrying its own payload
- Command: a node's control directive (update + routing), or a resume input
- Interrupt: a pending pause-for-input raised by a node
- PendingTask / TaskWrite: the scheduled frontier and the saved results of
  tasks that finished in a suspended superstep
- StateSnapshot: a read-only view of one checkpoint
"""

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stepgraph.core.config import RunConfig


class RunStatus(str, Enum):
    """Lifecycle of a thread's execution."""
    PENDING = "pending"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"


class StreamMode(str, Enum):
    """What ``CompiledGraph.astream`` yields."""
    VALUES = "values"    # full state after every superstep
    UPDATES = "updates"  # {node: update} for every task
    CUSTOM = "custom"    # chunks emitted through get_stream_writer()
    DEBUG = "debug"      # task and checkpoint events


class Send(BaseModel):
    """Schedule ``node`` in the next superstep with ``arg`` as its input.

    Example:
        ```python
        def fan_out(state):
            return [Send("summarize", {"doc": d}) for d in state["docs"]]
        ```
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    node: str
    arg: Any = None

    def __init__(self, node: Optional[str] = None, arg: Any = None, **data: Any):
        if node is not None:
            data["node"] = node
        data.setdefault("arg", arg)
        super().__init__(**data)


Goto = Union[str, Send]


class Command(BaseModel):
    """Control directive returned by a node, or resume input to a run.

    Variants:
        Command(update=...)                       state update only
        Command(update=..., goto=...)             update + explicit successor(s)
        Command(update=..., goto=..., graph=PARENT)
                                                  applied in the parent graph
        Command(resume=...)                       run input resuming an interrupt
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    PARENT: ClassVar[str] = "__parent__"

    update: Optional[Any] = None
    goto: Tuple[Goto, ...] = ()
    graph: Optional[str] = None
    resume: Optional[Any] = None

    @field_validator("goto", mode="before")
    @classmethod
    def _normalize_goto(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, (str, Send)):
            return (value,)
        return tuple(value)

    @field_validator("graph")
    @classmethod
    def _check_graph(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value != cls.PARENT:
            raise ValueError(f"graph must be None or Command.PARENT, got {value!r}")
        return value

    @property
    def has_resume(self) -> bool:
        """Whether ``resume`` was given explicitly (``None`` is a valid value)."""
        return "resume" in self.model_fields_set


class Interrupt(BaseModel):
    """A pause requested by ``interrupt(value)`` inside a node."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    value: Any = None
    id: str
    node: str
    task_id: str


class PendingTask(BaseModel):
    """A node invocation scheduled for the next superstep."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    node: str
    is_send: bool = False
    payload: Any = None
    resume: List[Any] = Field(default_factory=list)


class TaskWrite(BaseModel):
    """Result of a task that finished in a superstep that then suspended."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    task_id: str
    node: str
    update: Dict[str, Any] = Field(default_factory=dict)
    goto: List[Goto] = Field(default_factory=list)


class StateSnapshot(BaseModel):
    """Read-only view of a thread at one checkpoint."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    values: Dict[str, Any]
    next: Tuple[str, ...] = ()
    tasks: List[PendingTask] = Field(default_factory=list)
    interrupts: List[Interrupt] = Field(default_factory=list)
    config: Optional[RunConfig] = None
    parent_config: Optional[RunConfig] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    status: RunStatus = RunStatus.PENDING
    step: int = -1
