"""Checkpoint model, serializers and the checkpoint store.

A checkpoint is an immutable snapshot of one thread at a superstep boundary:
committed values, the pending tasks of the next superstep, results of tasks
that already finished in a suspended superstep, and pending interrupts.
Checkpoints form a tree through ``parent_id``; a thread's history is the
ancestor chain of a checkpoint, so forking a past checkpoint starts an
alternate branch without touching earlier entries.
"""

import abc
import asyncio
import pickle
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_core import PydanticSerializationError

from stepgraph.core.checkpoint.backends import StorageBackend
from stepgraph.core.errors import CheckpointNotFound, SerializationError
from stepgraph.core.graph.constants import NS_SEP
from stepgraph.core.graph.types import Interrupt, PendingTask, RunStatus, TaskWrite
from stepgraph.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.CHECKPOINT)


def new_checkpoint_id() -> str:
    return uuid.uuid4().hex


class Checkpoint(BaseModel):
    """
    Single checkpoint in a thread's history.

    Attributes:
        checkpoint_id: Unique id within the thread
        thread_id: Owning thread
        parent_id: Checkpoint this one was derived from
        step: Superstep counter (-1 for the first input checkpoint)
        status: Thread status at this point
        values: Committed channel values
        tasks: Tasks scheduled for the next superstep
        pending_writes: Results of tasks that finished before a suspension
        interrupts: Interrupts awaiting a resume value
        metadata: ``source`` (input | loop | interrupt | update | fork), ``writes``, tags
        created_at: Creation time (UTC)
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    checkpoint_id: str = Field(default_factory=new_checkpoint_id)
    thread_id: str
    parent_id: Optional[str] = None
    step: int = -1
    status: RunStatus = RunStatus.RUNNING
    values: Dict[str, Any] = Field(default_factory=dict)
    tasks: List[PendingTask] = Field(default_factory=list)
    pending_writes: List[TaskWrite] = Field(default_factory=list)
    interrupts: List[Interrupt] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def next(self) -> Tuple[str, ...]:
        return tuple(task.node for task in self.tasks)


class Serializer(abc.ABC):
    """Turns checkpoints into bytes and back."""

    @abc.abstractmethod
    def dumps(self, checkpoint: Checkpoint) -> bytes:
        ...

    @abc.abstractmethod
    def loads(self, data: bytes) -> Checkpoint:
        ...


class PickleSerializer(Serializer):
    """Keeps arbitrary Python values intact; for trusted local storage only."""

    def dumps(self, checkpoint: Checkpoint) -> bytes:
        try:
            return pickle.dumps(checkpoint, protocol=pickle.HIGHEST_PROTOCOL)
        except (pickle.PicklingError, TypeError, AttributeError) as exc:
            raise SerializationError(
                f"Cannot serialize checkpoint {checkpoint.checkpoint_id}: {exc}",
                thread_id=checkpoint.thread_id,
                step=checkpoint.step,
            ) from exc

    def loads(self, data: bytes) -> Checkpoint:
        try:
            checkpoint = pickle.loads(data)
        except (pickle.UnpicklingError, EOFError, AttributeError, ImportError) as exc:
            raise SerializationError(f"Cannot deserialize checkpoint: {exc}") from exc
        if not isinstance(checkpoint, Checkpoint):
            raise SerializationError(f"Stored object is a {type(checkpoint).__name__}, not a Checkpoint")
        return checkpoint


class JsonSerializer(Serializer):
    """Pydantic JSON. Values come back as plain JSON types; the graph
    re-validates them through its state schema when loading."""

    def __init__(self, indent: Optional[int] = None):
        self.indent = indent

    def dumps(self, checkpoint: Checkpoint) -> bytes:
        try:
            return checkpoint.model_dump_json(indent=self.indent).encode("utf-8")
        except PydanticSerializationError as exc:
            raise SerializationError(
                f"Cannot serialize checkpoint {checkpoint.checkpoint_id} as JSON: {exc}",
                thread_id=checkpoint.thread_id,
                step=checkpoint.step,
            ) from exc

    def loads(self, data: bytes) -> Checkpoint:
        try:
            return Checkpoint.model_validate_json(data)
        except ValidationError as exc:
            raise SerializationError(f"Cannot deserialize checkpoint: {exc}") from exc


def _overwrite_values(values: Dict[str, Any], edits: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(values)
    merged.update(edits)
    return merged


class CheckpointStore:
    """Saves, lists, loads and forks checkpoints on a storage backend.

    Writes for one thread are serialized with an ``asyncio.Lock``; blocking
    backend I/O runs in a worker thread.
    """

    def __init__(self, backend: StorageBackend, serializer: Optional[Serializer] = None):
        self.backend = backend
        self.serializer = serializer or PickleSerializer()
        self._write_locks: Dict[str, asyncio.Lock] = {}
        self._run_locks: Dict[str, asyncio.Lock] = {}

    def thread_lock(self, thread_id: str) -> asyncio.Lock:
        """Lock held by a run for its whole duration on ``thread_id``."""
        return self._run_locks.setdefault(thread_id, asyncio.Lock())

    async def save(self, thread_id: str, checkpoint: Checkpoint) -> Checkpoint:
        """Persist ``checkpoint``; it is either fully stored or not at all.

        Raises:
            SerializationError: If the checkpoint cannot be serialized
            ValueError: If the checkpoint belongs to another thread
        """
        if checkpoint.thread_id != thread_id:
            raise ValueError(
                f"Checkpoint belongs to thread '{checkpoint.thread_id}', not '{thread_id}'"
            )
        data = self.serializer.dumps(checkpoint)
        async with self._write_locks.setdefault(thread_id, asyncio.Lock()):
            await asyncio.to_thread(self.backend.put, thread_id, checkpoint.checkpoint_id, data)
        logger.debug(
            f"Saved checkpoint {checkpoint.checkpoint_id} "
            f"(thread={thread_id}, step={checkpoint.step}, status={checkpoint.status.value})"
        )
        return checkpoint

    async def load(self, thread_id: str, checkpoint_id: str) -> Checkpoint:
        """Load one checkpoint.

        Raises:
            CheckpointNotFound: If the id is unknown in this thread
        """
        data = await asyncio.to_thread(self.backend.get, thread_id, checkpoint_id)
        if data is None:
            raise CheckpointNotFound(
                f"Checkpoint '{checkpoint_id}' not found", thread_id=thread_id
            )
        return self.serializer.loads(data)

    async def list(self, thread_id: str) -> List[Checkpoint]:
        """All checkpoints of a thread in creation order (all branches)."""
        ids = await asyncio.to_thread(self.backend.list, thread_id)
        return [await self.load(thread_id, checkpoint_id) for checkpoint_id in ids]

    async def latest(self, thread_id: str) -> Optional[Checkpoint]:
        """Most recently created checkpoint, or None for an unknown thread."""
        ids = await asyncio.to_thread(self.backend.list, thread_id)
        if not ids:
            return None
        return await self.load(thread_id, ids[-1])

    async def history(
        self,
        thread_id: str,
        checkpoint_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Checkpoint]:
        """Ancestor chain of a checkpoint (latest if unset), newest first."""
        if checkpoint_id is None:
            head = await self.latest(thread_id)
            if head is None:
                return []
        else:
            head = await self.load(thread_id, checkpoint_id)

        chain = [head]
        while chain[-1].parent_id is not None and (limit is None or len(chain) < limit):
            chain.append(await self.load(thread_id, chain[-1].parent_id))
        return chain

    async def fork(
        self,
        thread_id: str,
        checkpoint_id: str,
        state_edits: Optional[Mapping[str, Any]] = None,
        *,
        apply: Optional[Callable[[Dict[str, Any], Mapping[str, Any]], Dict[str, Any]]] = None,
        tasks: Optional[List[PendingTask]] = None,
        new_thread_id: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Checkpoint:
        """Append an alternate branch derived from ``checkpoint_id``.

        Args:
            thread_id: Thread holding the source checkpoint
            checkpoint_id: Fork point
            state_edits: Channel edits applied on top of the fork point's values
            apply: Merge function ``(values, edits) -> values`` (default overwrite)
            tasks: Pending tasks of the new checkpoint (default: the fork point's)
            new_thread_id: Copy the fork point's history into this thread and
                fork there instead of in ``thread_id``
            metadata: Extra metadata for the new checkpoint

        Returns:
            The new checkpoint, whose parent is the fork point
        """
        source = await self.load(thread_id, checkpoint_id)
        target = new_thread_id or thread_id
        edits = dict(state_edits or {})

        if target != thread_id:
            if await asyncio.to_thread(self.backend.list, target):
                raise ValueError(f"Thread '{target}' already exists")
            for ancestor in reversed(await self.history(thread_id, checkpoint_id)):
                await self.save(target, ancestor.model_copy(update={"thread_id": target}))

        merge = apply or _overwrite_values
        next_tasks = list(source.tasks if tasks is None else tasks)
        forked = Checkpoint(
            thread_id=target,
            parent_id=source.checkpoint_id,
            step=source.step + 1,
            status=RunStatus.PENDING if next_tasks else RunStatus.COMPLETED,
            values=merge(dict(source.values), edits),
            tasks=next_tasks,
            metadata={
                "source": "fork",
                "writes": edits,
                "forked_from": {"thread_id": thread_id, "checkpoint_id": checkpoint_id},
                **dict(metadata or {}),
            },
        )
        logger.info(f"Forked thread {thread_id}@{checkpoint_id} into {target}@{forked.checkpoint_id}")
        return await self.save(target, forked)

    async def delete_thread(self, thread_id: str) -> None:
        """Remove a thread and all of its checkpoints.

        Threads derived from it by subgraph runs (``thread|node|task``) are
        removed with it.
        """
        prefix = thread_id + NS_SEP
        known = set(await self.threads()) | set(self._write_locks) | set(self._run_locks)
        doomed = [thread_id] + sorted(t for t in known if t.startswith(prefix))
        for target in doomed:
            async with self._write_locks.setdefault(target, asyncio.Lock()):
                await asyncio.to_thread(self.backend.delete, target)
            self._write_locks.pop(target, None)
            self._run_locks.pop(target, None)
        logger.info(f"Deleted thread {thread_id} ({len(doomed) - 1} subgraph threads)")

    async def threads(self) -> List[str]:
        return await asyncio.to_thread(self.backend.threads)
