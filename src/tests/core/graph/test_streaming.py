"""Tests for stream modes."""

import asyncio
from typing import Annotated, TypedDict

import pytest

from stepgraph.core.checkpoint.memory import InMemoryCheckpointStore
from stepgraph.core.errors import GraphValidationError, NodeExecutionError
from stepgraph.core.graph.base import StateGraph
from stepgraph.core.graph.compiled import CompiledGraph
from stepgraph.core.graph.constants import START
from stepgraph.core.graph.context import get_stream_writer
from stepgraph.core.graph.reducers import append


class Job(TypedDict):
    name: str
    events: Annotated[list, append]


def fetch(state):
    writer = get_stream_writer()
    writer({"progress": "fetching"})
    return {"events": ["fetched"]}


async def parse(state):
    writer = get_stream_writer()
    writer({"progress": "parsing"})
    await asyncio.sleep(0)
    return {"events": ["parsed"]}


@pytest.fixture
def app() -> CompiledGraph:
    """Two-step graph whose nodes write custom chunks."""
    graph = StateGraph(Job).add_node("fetch", fetch).add_node("parse", parse)
    graph.add_edge(START, "fetch").add_edge("fetch", "parse")
    return graph.compile()


async def collect(app, input, **kwargs):
    return [chunk async for chunk in app.astream(input, **kwargs)]


class TestStreamModes:
    """Test each stream mode on its own."""

    @pytest.mark.asyncio
    async def test_values(self, app):
        chunks = await collect(app, {"name": "job"}, stream_mode="values")
        assert chunks == [
            {"name": "job", "events": []},
            {"name": "job", "events": ["fetched"]},
            {"name": "job", "events": ["fetched", "parsed"]},
        ]

    @pytest.mark.asyncio
    async def test_updates(self, app):
        chunks = await collect(app, {"name": "job"}, stream_mode="updates")
        assert chunks == [
            {"fetch": {"events": ["fetched"]}},
            {"parse": {"events": ["parsed"]}},
        ]

    @pytest.mark.asyncio
    async def test_parallel_updates_in_task_order(self):
        graph = StateGraph(Job)
        graph.add_node("left", lambda s: {"events": ["left"]})
        graph.add_node("right", lambda s: {"events": ["right"]})
        graph.add_edge(START, "right").add_edge(START, "left")
        chunks = await collect(graph.compile(), {"name": "job"}, stream_mode="updates")
        assert chunks == [{"left": {"events": ["left"]}}, {"right": {"events": ["right"]}}]

    @pytest.mark.asyncio
    async def test_custom(self, app):
        chunks = await collect(app, {"name": "job"}, stream_mode="custom")
        assert chunks == [{"progress": "fetching"}, {"progress": "parsing"}]

    @pytest.mark.asyncio
    async def test_custom_from_subgraph(self, app):
        parent = StateGraph(Job).add_node("child", app).set_entry_point("child").compile()
        chunks = await collect(parent, {"name": "job"}, stream_mode="custom")
        assert chunks == [{"progress": "fetching"}, {"progress": "parsing"}]

    @pytest.mark.asyncio
    async def test_debug(self, app):
        chunks = await collect(app, {"name": "job"}, stream_mode="debug")
        kinds = [chunk["type"] for chunk in chunks]
        assert kinds == ["task", "task_result", "task", "task_result"]
        assert chunks[0]["step"] == 0
        assert chunks[0]["payload"]["name"] == "fetch"
        assert chunks[1]["payload"]["result"].update == {"events": ["fetched"]}

    @pytest.mark.asyncio
    async def test_debug_with_checkpoints(self):
        store = InMemoryCheckpointStore()
        graph = StateGraph(Job).add_node("fetch", fetch).set_entry_point("fetch")
        chunks = await collect(
            graph.compile(checkpointer=store),
            {"name": "job"},
            config={"configurable": {"thread_id": "debug"}},
            stream_mode="debug",
        )
        checkpoints = [chunk for chunk in chunks if chunk["type"] == "checkpoint"]
        assert [chunk["step"] for chunk in checkpoints] == [-1, 0]
        assert checkpoints[0]["payload"]["next"] == ["fetch"]
        assert checkpoints[-1]["payload"]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_debug_reports_failures(self):
        def fail(state):
            raise ValueError("boom")

        graph = StateGraph(Job).add_node("fail", fail).set_entry_point("fail").compile()
        chunks = []
        with pytest.raises(NodeExecutionError):
            async for chunk in graph.astream({"name": "job"}, stream_mode="debug"):
                chunks.append(chunk)
        assert "boom" in chunks[-1]["payload"]["error"]


class TestStreamOptions:
    """Test combining modes and the sync API."""

    @pytest.mark.asyncio
    async def test_multiple_modes_are_tagged(self, app):
        chunks = await collect(app, {"name": "job"}, stream_mode=["updates", "custom"])
        assert chunks == [
            ("custom", {"progress": "fetching"}),
            ("updates", {"fetch": {"events": ["fetched"]}}),
            ("custom", {"progress": "parsing"}),
            ("updates", {"parse": {"events": ["parsed"]}}),
        ]

    @pytest.mark.asyncio
    async def test_unknown_mode(self, app):
        with pytest.raises(ValueError):
            await collect(app, {"name": "job"}, stream_mode="everything")

    @pytest.mark.asyncio
    async def test_empty_mode_list(self, app):
        with pytest.raises(GraphValidationError):
            await collect(app, {"name": "job"}, stream_mode=[])

    def test_sync_stream(self, app):
        chunks = list(app.stream({"name": "job"}, stream_mode="updates"))
        assert [list(chunk) for chunk in chunks] == [["fetch"], ["parse"]]

    def test_writer_outside_graph_is_noop(self):
        assert get_stream_writer()({"ignored": True}) is None

    @pytest.mark.asyncio
    async def test_early_exit_cancels_run(self, app):
        stream = app.astream({"name": "job"}, stream_mode="values")
        first = await stream.__anext__()
        await stream.aclose()
        assert first == {"name": "job", "events": []}
