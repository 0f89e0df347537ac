"""Compiled, executable graph.

``StateGraph.compile()`` freezes the builder into a ``CompiledGraph``. It
is immutable and safe to share; every invocation creates its own
``StepEngine``.

Example:
    ```python
    app = builder.compile(checkpointer=InMemoryCheckpointStore())
    config = {"configurable": {"thread_id": "t1"}}

    result = await app.ainvoke({"topic": "graphs"}, config)
    async for chunk in app.astream(None, config, stream_mode="updates"):
        print(chunk)
    ```
"""

import asyncio
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Dict,
    FrozenSet,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from stepgraph.core.config import RunConfig
from stepgraph.core.errors import GraphValidationError
from stepgraph.core.graph.constants import INTERRUPT_KEY
from stepgraph.core.graph.context import get_task_context
from stepgraph.core.graph.engine import StepEngine
from stepgraph.core.graph.nodes.base.node import Node
from stepgraph.core.graph.routing import RoutingTable
from stepgraph.core.graph.state import State, StateSchema
from stepgraph.core.graph.types import Command, StateSnapshot, StreamMode
from stepgraph.core.logging import LogComponent, StepLoggingConfig, get_logger

if TYPE_CHECKING:
    from stepgraph.core.checkpoint.base import Checkpoint, CheckpointStore
    from stepgraph.core.graph.viz import GraphVisualizer

logger = get_logger(LogComponent.GRAPH)

ConfigLike = Union[RunConfig, Mapping[str, Any], None]
ModeLike = Union[str, StreamMode, Sequence[Union[str, StreamMode]]]

_DONE = object()


def _parse_modes(stream_mode: ModeLike) -> Tuple[List[StreamMode], bool]:
    """Modes to emit and whether chunks are tagged ``(mode, chunk)``."""
    if isinstance(stream_mode, (str, StreamMode)):
        return [StreamMode(stream_mode)], False
    modes = [StreamMode(mode) for mode in stream_mode]
    if not modes:
        raise GraphValidationError("stream_mode must name at least one mode")
    return modes, True


class CompiledGraph:
    """Executable graph.

    Attributes:
        schema: Resolved state schema
        nodes: Read-only mapping of node name to Node
        node_order: Node names in registration order
        routing: Frozen routing table
        checkpointer: Checkpoint store, or None for ephemeral runs
        interrupt_before: Nodes that suspend the run before they execute
        interrupt_after: Nodes that suspend the run after they execute
        name: Graph name used in logs and rendering
        logging_config: Verbosity of state logging during runs
    """

    def __init__(
        self,
        schema: StateSchema,
        nodes: Mapping[str, Node],
        routing: RoutingTable,
        checkpointer: Optional["CheckpointStore"] = None,
        interrupt_before: Sequence[str] = (),
        interrupt_after: Sequence[str] = (),
        name: str = "graph",
        logging_config: Optional[StepLoggingConfig] = None,
    ):
        self.schema = schema
        self.nodes = MappingProxyType(dict(nodes))
        self.node_order: Tuple[str, ...] = tuple(nodes)
        self.routing = routing
        self.routing.freeze()
        self.checkpointer = checkpointer
        self.interrupt_before: FrozenSet[str] = frozenset(interrupt_before)
        self.interrupt_after: FrozenSet[str] = frozenset(interrupt_after)
        self.name = name
        self.logging_config = logging_config or StepLoggingConfig()

    def __repr__(self) -> str:
        return f"CompiledGraph(name={self.name!r}, nodes={list(self.node_order)})"

    # Execution

    async def astream(
        self,
        input: Any,
        config: ConfigLike = None,
        stream_mode: ModeLike = StreamMode.VALUES,
    ) -> AsyncIterator[Any]:
        """Run the graph and yield chunks as supersteps complete.

        Args:
            input: State mapping, ``None`` to continue, or ``Command(resume=...)``
            config: RunConfig or dict (``{"configurable": {"thread_id": ...}}``)
            stream_mode: One mode, or a list of modes for ``(mode, chunk)`` pairs

        Yields:
            values: full state dict after each superstep
            updates: ``{node: update}`` per task, ``{"__interrupt__": (...)}`` on suspension
            custom: chunks passed to ``get_stream_writer()`` by nodes
            debug: ``{"type", "step", "payload"}`` task and checkpoint events
        """
        stream = self._astream(input, config, stream_mode)
        try:
            async for mode, chunk in stream:
                yield chunk if mode is None else (mode.value, chunk)
        finally:
            await stream.aclose()

    async def _astream(
        self,
        input: Any,
        config: ConfigLike,
        stream_mode: ModeLike,
        checkpointer: Optional["CheckpointStore"] = None,
    ) -> AsyncIterator[Tuple[Optional[StreamMode], Any]]:
        run_config = RunConfig.coerce(config)
        modes, tagged = _parse_modes(stream_mode)
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def emit(mode: StreamMode, chunk: Any) -> None:
            queue.put_nowait((mode, chunk))

        parent = get_task_context()
        if StreamMode.CUSTOM in modes:
            def writer(chunk: Any) -> None:
                loop.call_soon_threadsafe(queue.put_nowait, (StreamMode.CUSTOM, chunk))
        elif parent is not None:
            writer = parent.writer
        else:
            writer = None

        engine = StepEngine(
            self,
            run_config,
            checkpointer=checkpointer or self.checkpointer,
            emit=emit,
            writer=writer,
            modes=modes,
        )

        async def produce() -> None:
            try:
                await engine.run(input)
            finally:
                # Let chunks scheduled from worker threads land first
                loop.call_soon(queue.put_nowait, (_DONE, None))

        producer = asyncio.create_task(produce())
        try:
            while True:
                mode, chunk = await queue.get()
                if mode is _DONE:
                    break
                yield (mode if tagged else None), chunk
            await producer
        finally:
            if not producer.done():
                producer.cancel()
                try:
                    await producer
                except asyncio.CancelledError:
                    pass

    def stream(
        self,
        input: Any,
        config: ConfigLike = None,
        stream_mode: ModeLike = StreamMode.VALUES,
    ) -> Iterator[Any]:
        """Synchronous ``astream``; runs on a private event loop."""
        loop = asyncio.new_event_loop()
        agen = self.astream(input, config, stream_mode)
        try:
            while True:
                try:
                    yield loop.run_until_complete(agen.__anext__())
                except StopAsyncIteration:
                    break
        finally:
            loop.run_until_complete(agen.aclose())
            loop.close()

    async def ainvoke(self, input: Any, config: ConfigLike = None) -> Dict[str, Any]:
        """Run to completion (or suspension) and return the final state.

        When the run is suspended on ``interrupt()``, the result holds the
        pending interrupts under ``"__interrupt__"``.
        """
        return await self._ainvoke(input, config)

    async def _ainvoke(
        self,
        input: Any,
        config: ConfigLike,
        checkpointer: Optional["CheckpointStore"] = None,
    ) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        interrupts: List[Any] = []
        stream = self._astream(
            input, config, [StreamMode.VALUES, StreamMode.UPDATES], checkpointer=checkpointer
        )
        async for mode, chunk in stream:
            if mode is StreamMode.VALUES:
                values = chunk
            elif INTERRUPT_KEY in chunk:
                interrupts.extend(chunk[INTERRUPT_KEY])
        if interrupts:
            values = {**values, INTERRUPT_KEY: interrupts}
        return values

    def invoke(self, input: Any, config: ConfigLike = None) -> Dict[str, Any]:
        """Synchronous ``ainvoke``."""
        return asyncio.run(self.ainvoke(input, config))

    async def aresume(self, value: Any, config: ConfigLike = None) -> Dict[str, Any]:
        """Resume a suspended thread with ``value`` for its pending interrupt(s).

        ``value`` may be a mapping of interrupt id to value to answer
        individual interrupts.
        """
        return await self.ainvoke(Command(resume=value), config)

    def resume(self, value: Any, config: ConfigLike = None) -> Dict[str, Any]:
        return asyncio.run(self.aresume(value, config))

    # State inspection and time travel

    def _require_store(self, config: ConfigLike) -> Tuple["CheckpointStore", RunConfig]:
        run_config = RunConfig.coerce(config)
        if self.checkpointer is None:
            raise GraphValidationError("This graph was compiled without a checkpointer")
        if not run_config.thread_id:
            raise GraphValidationError("A thread_id is required to read or update state")
        return self.checkpointer, run_config

    def _snapshot(self, checkpoint: "Checkpoint", run_config: RunConfig) -> StateSnapshot:
        return StateSnapshot(
            values=State.restore(self.schema, checkpoint.values).dump(),
            next=checkpoint.next,
            tasks=list(checkpoint.tasks),
            interrupts=list(checkpoint.interrupts),
            config=run_config.merge(checkpoint_id=checkpoint.checkpoint_id),
            parent_config=(
                run_config.merge(checkpoint_id=checkpoint.parent_id)
                if checkpoint.parent_id else None
            ),
            metadata=dict(checkpoint.metadata),
            created_at=checkpoint.created_at,
            status=checkpoint.status,
            step=checkpoint.step,
        )

    async def aget_state(self, config: ConfigLike) -> StateSnapshot:
        """Snapshot of the thread at ``checkpoint_id`` (latest if unset).

        An unknown thread yields an empty snapshot with the initial values.
        """
        store, run_config = self._require_store(config)
        if run_config.checkpoint_id is not None:
            checkpoint = await store.load(run_config.thread_id, run_config.checkpoint_id)
        else:
            checkpoint = await store.latest(run_config.thread_id)
        if checkpoint is None:
            return StateSnapshot(values=State(self.schema).dump(), config=run_config)
        return self._snapshot(checkpoint, run_config)

    def get_state(self, config: ConfigLike) -> StateSnapshot:
        return asyncio.run(self.aget_state(config))

    async def aget_state_history(
        self,
        config: ConfigLike,
        limit: Optional[int] = None,
    ) -> List[StateSnapshot]:
        """Ancestor chain of the selected checkpoint, newest first."""
        store, run_config = self._require_store(config)
        history = await store.history(run_config.thread_id, run_config.checkpoint_id, limit=limit)
        return [self._snapshot(checkpoint, run_config) for checkpoint in history]

    def get_state_history(self, config: ConfigLike, limit: Optional[int] = None) -> List[StateSnapshot]:
        return asyncio.run(self.aget_state_history(config, limit))

    async def aupdate_state(
        self,
        config: ConfigLike,
        values: Any,
        as_node: Optional[str] = None,
        new_thread_id: Optional[str] = None,
    ) -> RunConfig:
        """Fork the thread at the selected checkpoint with edited values.

        ``values`` are merged through the channel reducers as if written by
        ``as_node``. With ``as_node`` the new checkpoint's pending tasks are
        that node's successors; otherwise the fork point's pending tasks are
        kept. Continue the fork with ``ainvoke(None, returned_config)``.

        Returns:
            Config pointing at the new checkpoint
        """
        store, run_config = self._require_store(config)
        thread_id = run_config.thread_id
        async with store.thread_lock(thread_id):
            if run_config.checkpoint_id is not None:
                source = await store.load(thread_id, run_config.checkpoint_id)
            else:
                source = await store.latest(thread_id)
                if source is None:
                    raise GraphValidationError(
                        f"Thread '{thread_id}' has no checkpoint to update; run the graph first",
                        thread_id=thread_id,
                    )

            writer = as_node or "__update__"
            if as_node is not None and as_node not in self.nodes:
                raise GraphValidationError(f"Unknown node '{as_node}' for as_node", thread_id=thread_id)
            merged = State.restore(self.schema, source.values).apply([(writer, values)])

            tasks = None
            if as_node is not None:
                engine = StepEngine(self, run_config, checkpointer=store)
                tasks = await engine.next_tasks(as_node, merged)

            forked = await store.fork(
                thread_id,
                source.checkpoint_id,
                self.schema.coerce_update(values, writer),
                apply=lambda *_: merged.to_values(),
                tasks=tasks,
                new_thread_id=new_thread_id,
                metadata={"source": "update", "as_node": as_node},
            )
        logger.info(
            f"Updated state of thread {forked.thread_id} as {writer}: "
            f"checkpoint {forked.checkpoint_id} (next={list(forked.next)})"
        )
        return run_config.merge(thread_id=forked.thread_id, checkpoint_id=forked.checkpoint_id)

    def update_state(
        self,
        config: ConfigLike,
        values: Any,
        as_node: Optional[str] = None,
        new_thread_id: Optional[str] = None,
    ) -> RunConfig:
        return asyncio.run(self.aupdate_state(config, values, as_node, new_thread_id))

    # Rendering

    def get_graph(self) -> "GraphVisualizer":
        from stepgraph.core.graph.viz import GraphVisualizer

        return GraphVisualizer(self)
