"""Storage backends for serialized checkpoints.

A backend stores opaque bytes keyed by ``(thread_id, checkpoint_id)`` and
remembers insertion order per thread. It knows nothing about checkpoints
themselves; ``CheckpointStore`` handles (de)serialization and history.
"""

import abc
import json
import os
import shutil
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Dict, List, Optional, Union
from urllib.parse import quote, unquote

from stepgraph.core.errors import SerializationError
from stepgraph.core.utils.io import atomic_write


class StorageBackend(abc.ABC):
    """Byte storage keyed by thread and checkpoint id."""

    @abc.abstractmethod
    def put(self, thread_id: str, checkpoint_id: str, data: bytes) -> None:
        """Store ``data``; overwrites an existing entry with the same id."""

    @abc.abstractmethod
    def get(self, thread_id: str, checkpoint_id: str) -> Optional[bytes]:
        """Stored bytes, or None if missing."""

    @abc.abstractmethod
    def list(self, thread_id: str) -> List[str]:
        """Checkpoint ids of a thread in insertion order."""

    @abc.abstractmethod
    def delete(self, thread_id: str) -> None:
        """Remove a thread; unknown threads are ignored."""

    @abc.abstractmethod
    def threads(self) -> List[str]:
        """Known thread ids."""


class MemoryBackend(StorageBackend):
    """Process-local backend; contents are lost when the process exits."""

    def __init__(self):
        self._data: Dict[str, "OrderedDict[str, bytes]"] = {}
        self._lock = threading.Lock()

    def put(self, thread_id: str, checkpoint_id: str, data: bytes) -> None:
        with self._lock:
            self._data.setdefault(thread_id, OrderedDict())[checkpoint_id] = data

    def get(self, thread_id: str, checkpoint_id: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(thread_id, {}).get(checkpoint_id)

    def list(self, thread_id: str) -> List[str]:
        with self._lock:
            return list(self._data.get(thread_id, {}))

    def delete(self, thread_id: str) -> None:
        with self._lock:
            self._data.pop(thread_id, None)

    def threads(self) -> List[str]:
        with self._lock:
            return list(self._data)


class FileBackend(StorageBackend):
    """One directory per thread, one file per checkpoint.

    Layout::

        <base_path>/<quoted thread id>/<checkpoint id>.ckpt
        <base_path>/<quoted thread id>/index.json    # ordered checkpoint ids

    The checkpoint file is written first and the index last, both through
    atomic renames, so a crash leaves either the old or the new index and
    never a half-written checkpoint.
    """

    INDEX_FILE = "index.json"
    SUFFIX = ".ckpt"

    def __init__(self, base_path: Union[str, Path]):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _thread_dir(self, thread_id: str) -> Path:
        if not thread_id:
            raise ValueError("thread_id must be a non-empty string")
        name = quote(thread_id, safe="")
        if not name.strip("."):
            # "." and ".." would name the store root or its parent
            name = name.replace(".", "%2E")
        thread_dir = self.base_path / name
        if thread_dir.resolve().parent != self.base_path.resolve():
            raise ValueError(f"Thread id {thread_id!r} escapes the checkpoint directory")
        return thread_dir

    def _read_index(self, thread_dir: Path) -> List[str]:
        index_path = thread_dir / self.INDEX_FILE
        if not index_path.exists():
            return []
        try:
            with open(index_path, "r", encoding="utf-8") as f:
                return list(json.load(f))
        except (OSError, json.JSONDecodeError) as exc:
            raise SerializationError(f"Corrupt checkpoint index {index_path}: {exc}") from exc

    def put(self, thread_id: str, checkpoint_id: str, data: bytes) -> None:
        thread_dir = self._thread_dir(thread_id)
        with self._lock:
            thread_dir.mkdir(parents=True, exist_ok=True)
            with atomic_write(thread_dir / f"{checkpoint_id}{self.SUFFIX}", mode="wb") as f:
                f.write(data)
            index = self._read_index(thread_dir)
            if checkpoint_id not in index:
                index.append(checkpoint_id)
                with atomic_write(thread_dir / self.INDEX_FILE) as f:
                    json.dump(index, f)

    def get(self, thread_id: str, checkpoint_id: str) -> Optional[bytes]:
        path = self._thread_dir(thread_id) / f"{checkpoint_id}{self.SUFFIX}"
        if os.sep in checkpoint_id or not path.is_file():
            return None
        return path.read_bytes()

    def list(self, thread_id: str) -> List[str]:
        thread_dir = self._thread_dir(thread_id)
        with self._lock:
            if not thread_dir.is_dir():
                return []
            return self._read_index(thread_dir)

    def delete(self, thread_id: str) -> None:
        thread_dir = self._thread_dir(thread_id)
        with self._lock:
            if thread_dir.is_dir():
                shutil.rmtree(thread_dir)

    def threads(self) -> List[str]:
        if not self.base_path.is_dir():
            return []
        return sorted(
            unquote(entry.name)
            for entry in self.base_path.iterdir()
            if entry.is_dir() and (entry / self.INDEX_FILE).exists()
        )
