"""Checkpoint persistence."""

from stepgraph.core.checkpoint.backends import FileBackend, MemoryBackend, StorageBackend
from stepgraph.core.checkpoint.base import (
    Checkpoint,
    CheckpointStore,
    JsonSerializer,
    PickleSerializer,
    Serializer,
)
from stepgraph.core.checkpoint.file import FileCheckpointStore
from stepgraph.core.checkpoint.memory import InMemoryCheckpointStore

__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "Serializer",
    "PickleSerializer",
    "JsonSerializer",
    "StorageBackend",
    "MemoryBackend",
    "FileBackend",
    "InMemoryCheckpointStore",
    "FileCheckpointStore",
]
