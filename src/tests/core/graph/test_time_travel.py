"""Tests for state inspection, replay and forking."""

from typing import Annotated, Any, Dict, TypedDict

import pytest

from stepgraph.core.checkpoint.memory import InMemoryCheckpointStore
from stepgraph.core.config import RunConfig
from stepgraph.core.errors import CheckpointNotFound, GraphValidationError
from stepgraph.core.graph.base import StateGraph
from stepgraph.core.graph.compiled import CompiledGraph
from stepgraph.core.graph.constants import START
from stepgraph.core.graph.reducers import append
from stepgraph.core.graph.types import RunStatus


class Trip(TypedDict):
    city: str
    path: Annotated[list, append]


@pytest.fixture
def runs() -> Dict[str, int]:
    """Fixture counting node executions."""
    return {"plan": 0, "book": 0, "confirm": 0}


@pytest.fixture
def app(runs) -> CompiledGraph:
    """Three-step linear graph with an in-memory checkpointer."""
    def make(name):
        def node(state):
            runs[name] += 1
            return {"path": [f"{name}:{state['city']}"]}
        return node

    graph = StateGraph(Trip)
    for name in ("plan", "book", "confirm"):
        graph.add_node(name, make(name))
    graph.add_edge(START, "plan").add_edge("plan", "book").add_edge("book", "confirm")
    return graph.compile(checkpointer=InMemoryCheckpointStore())


@pytest.fixture
def config() -> Dict[str, Any]:
    """Fixture providing a thread config."""
    return {"configurable": {"thread_id": "trip"}}


async def checkpoint_before(app: CompiledGraph, config, node: str):
    history = await app.aget_state_history(config)
    return next(snapshot for snapshot in history if snapshot.next == (node,))


class TestStateInspection:
    """Test reading checkpoints back."""

    @pytest.mark.asyncio
    async def test_get_state_of_unknown_thread(self, app):
        snapshot = await app.aget_state({"configurable": {"thread_id": "nobody"}})
        assert snapshot.values == {"path": []}
        assert snapshot.next == ()
        assert snapshot.config.checkpoint_id is None

    @pytest.mark.asyncio
    async def test_get_state_after_run(self, app, config):
        await app.ainvoke({"city": "Oslo"}, config)
        snapshot = await app.aget_state(config)

        assert snapshot.values["path"] == ["plan:Oslo", "book:Oslo", "confirm:Oslo"]
        assert snapshot.status == RunStatus.COMPLETED
        assert snapshot.next == ()
        assert snapshot.step == 2
        assert snapshot.metadata["source"] == "loop"
        assert snapshot.metadata["writes"] == {"confirm": {"path": ["confirm:Oslo"]}}
        assert snapshot.config.thread_id == "trip"
        assert snapshot.parent_config.checkpoint_id is not None

    @pytest.mark.asyncio
    async def test_history_is_newest_first(self, app, config):
        await app.ainvoke({"city": "Oslo"}, config)
        history = await app.aget_state_history(config)

        assert [snapshot.step for snapshot in history] == [2, 1, 0, -1]
        assert [snapshot.next for snapshot in history] == [
            (), ("confirm",), ("book",), ("plan",)
        ]
        assert history[-1].metadata["source"] == "input"
        assert history[-1].values["path"] == []
        for child, parent in zip(history, history[1:]):
            assert child.parent_config.checkpoint_id == parent.config.checkpoint_id

    @pytest.mark.asyncio
    async def test_history_limit(self, app, config):
        await app.ainvoke({"city": "Oslo"}, config)
        history = await app.aget_state_history(config, limit=2)
        assert [snapshot.step for snapshot in history] == [2, 1]

    @pytest.mark.asyncio
    async def test_get_past_state(self, app, config):
        await app.ainvoke({"city": "Oslo"}, config)
        before_book = await checkpoint_before(app, config, "book")

        snapshot = await app.aget_state(before_book.config)
        assert snapshot.values["path"] == ["plan:Oslo"]

    @pytest.mark.asyncio
    async def test_unknown_checkpoint(self, app, config):
        await app.ainvoke({"city": "Oslo"}, config)
        with pytest.raises(CheckpointNotFound):
            await app.aget_state(RunConfig(thread_id="trip", checkpoint_id="missing"))

    @pytest.mark.asyncio
    async def test_state_requires_checkpointer(self):
        graph = StateGraph(Trip).add_node("plan", lambda s: None).set_entry_point("plan")
        with pytest.raises(GraphValidationError):
            await graph.compile().aget_state({"configurable": {"thread_id": "t"}})

    @pytest.mark.asyncio
    async def test_run_requires_thread_id(self, app):
        with pytest.raises(GraphValidationError):
            await app.ainvoke({"city": "Oslo"})

    @pytest.mark.asyncio
    async def test_follow_up_input_keeps_reducer_state(self, app, config):
        await app.ainvoke({"city": "Oslo"}, config)
        result = await app.ainvoke({"city": "Rome"}, config)
        assert result["path"][-1] == "confirm:Rome"
        assert len(result["path"]) == 6

    def test_sync_inspection(self, app, config):
        app.invoke({"city": "Oslo"}, config)
        assert app.get_state(config).step == 2
        assert len(app.get_state_history(config)) == 4


class TestReplay:
    """Test re-running from a past checkpoint."""

    @pytest.mark.asyncio
    async def test_replay_skips_completed_steps(self, app, config, runs):
        await app.ainvoke({"city": "Oslo"}, config)
        before_book = await checkpoint_before(app, config, "book")

        result = await app.ainvoke(None, before_book.config)
        assert result["path"] == ["plan:Oslo", "book:Oslo", "confirm:Oslo"]
        assert runs == {"plan": 1, "book": 2, "confirm": 2}

    @pytest.mark.asyncio
    async def test_replay_branches_history(self, app, config):
        await app.ainvoke({"city": "Oslo"}, config)
        before_book = await checkpoint_before(app, config, "book")
        await app.ainvoke(None, before_book.config)

        history = await app.aget_state_history(config)
        assert [snapshot.step for snapshot in history] == [2, 1, 0, -1]
        assert history[2].config.checkpoint_id == before_book.config.checkpoint_id

    @pytest.mark.asyncio
    async def test_continue_on_empty_thread(self, app, config):
        with pytest.raises(GraphValidationError):
            await app.ainvoke(None, config)


class TestUpdateState:
    """Test forking with edited state."""

    @pytest.mark.asyncio
    async def test_update_keeps_pending_tasks(self, app, config):
        await app.ainvoke({"city": "Oslo"}, config)
        before_book = await checkpoint_before(app, config, "book")

        fork_config = await app.aupdate_state(before_book.config, {"city": "Paris"})
        snapshot = await app.aget_state(fork_config)
        assert snapshot.next == ("book",)
        assert snapshot.metadata["source"] == "update"
        assert snapshot.parent_config.checkpoint_id == before_book.config.checkpoint_id

        result = await app.ainvoke(None, fork_config)
        assert result["path"] == ["plan:Oslo", "book:Paris", "confirm:Paris"]

    @pytest.mark.asyncio
    async def test_update_goes_through_reducers(self, app, config):
        await app.ainvoke({"city": "Oslo"}, config)
        before_book = await checkpoint_before(app, config, "book")

        fork_config = await app.aupdate_state(before_book.config, {"path": ["detour"]})
        snapshot = await app.aget_state(fork_config)
        assert snapshot.values["path"] == ["plan:Oslo", "detour"]

    @pytest.mark.asyncio
    async def test_update_as_node(self, app, config, runs):
        await app.ainvoke({"city": "Oslo"}, config)
        before_book = await checkpoint_before(app, config, "book")

        fork_config = await app.aupdate_state(
            before_book.config, {"path": ["booked by hand"]}, as_node="book"
        )
        snapshot = await app.aget_state(fork_config)
        assert snapshot.next == ("confirm",)
        assert snapshot.metadata["as_node"] == "book"

        result = await app.ainvoke(None, fork_config)
        assert result["path"] == ["plan:Oslo", "booked by hand", "confirm:Oslo"]
        assert runs["book"] == 1

    @pytest.mark.asyncio
    async def test_update_unknown_node(self, app, config):
        await app.ainvoke({"city": "Oslo"}, config)
        with pytest.raises(GraphValidationError):
            await app.aupdate_state(config, {"city": "Paris"}, as_node="ghost")

    @pytest.mark.asyncio
    async def test_update_empty_thread(self, app, config):
        with pytest.raises(GraphValidationError):
            await app.aupdate_state(config, {"city": "Paris"})

    @pytest.mark.asyncio
    async def test_fork_into_new_thread(self, app, config):
        await app.ainvoke({"city": "Oslo"}, config)
        original = await app.aget_state_history(config)
        before_book = await checkpoint_before(app, config, "book")

        fork_config = await app.aupdate_state(
            before_book.config, {"city": "Lima"}, new_thread_id="trip-lima"
        )
        assert fork_config.thread_id == "trip-lima"

        branch = await app.aget_state_history(fork_config)
        assert [s.config.checkpoint_id for s in branch[1:]] == [
            s.config.checkpoint_id for s in original[2:]
        ]
        assert [s.values for s in branch[1:]] == [s.values for s in original[2:]]

        result = await app.ainvoke(None, fork_config)
        assert result["path"] == ["plan:Oslo", "book:Lima", "confirm:Lima"]

        untouched = await app.aget_state(config)
        assert untouched.config.checkpoint_id == original[0].config.checkpoint_id

    @pytest.mark.asyncio
    async def test_fork_into_existing_thread(self, app, config):
        await app.ainvoke({"city": "Oslo"}, config)
        await app.ainvoke({"city": "Oslo"}, {"configurable": {"thread_id": "taken"}})
        with pytest.raises(ValueError):
            await app.aupdate_state(config, {"city": "Lima"}, new_thread_id="taken")
