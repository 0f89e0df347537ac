"""In-memory checkpoint store."""

from typing import Optional

from stepgraph.core.checkpoint.backends import MemoryBackend
from stepgraph.core.checkpoint.base import CheckpointStore, PickleSerializer, Serializer


class InMemoryCheckpointStore(CheckpointStore):
    """Checkpoint store kept in process memory.

    Checkpoints are pickled so that every load returns an independent copy;
    mutating a loaded value never changes stored history.
    """

    def __init__(self, serializer: Optional[Serializer] = None):
        super().__init__(MemoryBackend(), serializer or PickleSerializer())
