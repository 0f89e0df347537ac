"""Stepgraph - stateful graph execution with supersteps, checkpoints and time travel."""

from stepgraph.core import (
    GraphConfig,
    RunConfig,
    configure_logging,
    LogLevel,
    LogComponent,
)
from stepgraph.core.checkpoint import (
    Checkpoint,
    CheckpointStore,
    FileCheckpointStore,
    InMemoryCheckpointStore,
    JsonSerializer,
    PickleSerializer,
)
from stepgraph.core.errors import (
    CheckpointNotFound,
    ConcurrentUpdateConflict,
    GraphError,
    GraphRecursionError,
    GraphValidationError,
    InvalidUpdateError,
    NodeExecutionError,
    SchemaViolation,
    SerializationError,
    StepLimitExceeded,
)
from stepgraph.core.graph import (
    END,
    START,
    Command,
    CompiledGraph,
    Interrupt,
    Message,
    MessagesState,
    Node,
    RunStatus,
    Send,
    StateGraph,
    StateSnapshot,
    add,
    add_messages,
    append,
    error_handler,
    get_stream_writer,
    interrupt,
    merge_dicts,
    overwrite,
    union,
)

__version__ = "0.1.0"

__all__ = [
    'StateGraph',
    'CompiledGraph',
    'Node',
    'START',
    'END',
    'Command',
    'Send',
    'Interrupt',
    'RunStatus',
    'StateSnapshot',
    'interrupt',
    'get_stream_writer',
    'error_handler',
    'overwrite',
    'append',
    'add',
    'union',
    'merge_dicts',
    'Message',
    'MessagesState',
    'add_messages',
    'Checkpoint',
    'CheckpointStore',
    'InMemoryCheckpointStore',
    'FileCheckpointStore',
    'PickleSerializer',
    'JsonSerializer',
    'GraphError',
    'InvalidUpdateError',
    'SchemaViolation',
    'ConcurrentUpdateConflict',
    'StepLimitExceeded',
    'GraphRecursionError',
    'NodeExecutionError',
    'SerializationError',
    'CheckpointNotFound',
    'GraphValidationError',
    'GraphConfig',
    'RunConfig',
    'configure_logging',
    'LogLevel',
    'LogComponent',
]
