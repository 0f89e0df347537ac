"""File-system checkpoint store."""

from pathlib import Path
from typing import Optional, Union

from stepgraph.core.checkpoint.backends import FileBackend
from stepgraph.core.checkpoint.base import CheckpointStore, JsonSerializer, Serializer
from stepgraph.core.config import get_config


class FileCheckpointStore(CheckpointStore):
    """Checkpoint store persisting each thread to a directory.

    Args:
        base_path: Root directory (default: ``GraphConfig.checkpoint_dir``)
        serializer: Defaults to JSON; pass ``PickleSerializer()`` for state
            holding values JSON cannot represent
    """

    def __init__(
        self,
        base_path: Optional[Union[str, Path]] = None,
        serializer: Optional[Serializer] = None,
    ):
        self.base_path = Path(base_path) if base_path is not None else get_config().checkpoint_dir
        super().__init__(FileBackend(self.base_path), serializer or JsonSerializer())
