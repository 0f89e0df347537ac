"""Tests for base Node functionality.

This module tests the core Node classes including:
- Node initialization and validation
- Calling conventions of function nodes (sync, async, with config)
- Normalization of node results into commands
- The error_handler recovery decorator
"""

import threading
from typing import Any, Dict

import pytest
from pydantic import BaseModel, ValidationError

from stepgraph.core.config import RunConfig
from stepgraph.core.errors import GraphInterrupt, GraphValidationError, SchemaViolation
from stepgraph.core.graph.constants import END, START
from stepgraph.core.graph.nodes.base.node import FunctionNode, Node, accepts_config, error_handler
from stepgraph.core.graph.types import Command


class EchoNode(Node):
    """Test node that copies one channel to another."""

    async def process(self, state: Dict[str, Any], config: RunConfig) -> Dict[str, Any]:
        return {"out": state["in"], "thread": config.thread_id}


class StateOnlyNode(Node):
    """Test node whose process takes only the state."""

    async def process(self, state: Dict[str, Any]) -> Dict[str, Any]:
        return {"out": state["in"] * 2}


class Update(BaseModel):
    out: int = 0


@pytest.fixture
def config() -> RunConfig:
    """Fixture providing a run config."""
    return RunConfig(thread_id="t1")


class TestNodeInitialization:
    """Test node creation and validation."""

    def test_node_init(self):
        node = EchoNode(id="echo", metadata={"kind": "test"})
        assert node.id == "echo"
        assert node.get_metadata("kind") == "test"
        assert node.validate()

    def test_metadata_helpers(self):
        node = EchoNode(id="echo")
        node.set_metadata("retries", 2)
        assert node.get_metadata("retries") == 2
        assert node.get_metadata("missing", "default") == "default"

    def test_empty_id(self):
        with pytest.raises(ValidationError):
            EchoNode(id="")

    @pytest.mark.parametrize("name", [START, END])
    def test_reserved_id(self, name: str):
        with pytest.raises(ValidationError):
            EchoNode(id=name)

    @pytest.mark.asyncio
    async def test_base_process_not_implemented(self, config: RunConfig):
        with pytest.raises(NotImplementedError):
            await Node(id="bare").invoke({}, config)


class TestNodeInvocation:
    """Test invoking nodes."""

    @pytest.mark.asyncio
    async def test_subclass_with_config(self, config: RunConfig):
        command = await EchoNode(id="echo").invoke({"in": 1}, config)
        assert command.update == {"out": 1, "thread": "t1"}
        assert command.goto == ()

    @pytest.mark.asyncio
    async def test_subclass_without_config(self, config: RunConfig):
        command = await StateOnlyNode(id="double").invoke({"in": 2}, config)
        assert command.update == {"out": 4}

    @pytest.mark.asyncio
    async def test_sync_function_runs_in_worker_thread(self, config: RunConfig):
        main_thread = threading.get_ident()

        def work(state):
            return {"same_thread": threading.get_ident() == main_thread}

        command = await FunctionNode(id="work", func=work).invoke({}, config)
        assert command.update == {"same_thread": False}

    @pytest.mark.asyncio
    async def test_async_function_with_config(self, config: RunConfig):
        async def work(state, config):
            return {"thread": config.thread_id}

        command = await FunctionNode(id="work", func=work).invoke({}, config)
        assert command.update == {"thread": "t1"}

    @pytest.mark.asyncio
    async def test_none_result(self, config: RunConfig):
        command = await FunctionNode(id="noop", func=lambda state: None).invoke({}, config)
        assert command.update is None

    @pytest.mark.asyncio
    async def test_model_result(self, config: RunConfig):
        command = await FunctionNode(id="m", func=lambda state: Update(out=3)).invoke({}, config)
        assert command.update == Update(out=3)

    @pytest.mark.asyncio
    async def test_command_result(self, config: RunConfig):
        func = lambda state: Command(update={"out": 1}, goto="next")
        command = await FunctionNode(id="c", func=func).invoke({}, config)
        assert command.goto == ("next",)

    @pytest.mark.asyncio
    async def test_invalid_result(self, config: RunConfig):
        with pytest.raises(SchemaViolation):
            await FunctionNode(id="bad", func=lambda state: 42).invoke({}, config)

    @pytest.mark.asyncio
    async def test_resume_command_result(self, config: RunConfig):
        """Test nodes cannot return resume commands."""
        func = lambda state: Command(resume="yes")
        with pytest.raises(GraphValidationError):
            await FunctionNode(id="bad", func=func).invoke({}, config)

    def test_accepts_config(self):
        assert accepts_config(lambda state, config: None)
        assert accepts_config(lambda state, *rest: None)
        assert not accepts_config(lambda state: None)

    def test_defaulted_second_param_is_not_config(self):
        """Test closures binding names through defaults keep their values."""
        assert not accepts_config(lambda state, name="a": None)
        assert accepts_config(lambda state, config=None: None)
        assert not accepts_config(lambda state, *, config=None: None)

    @pytest.mark.asyncio
    async def test_closure_default_survives_invoke(self, config: RunConfig):
        func = lambda state, name="left": {"notes": [name]}
        command = await FunctionNode(id="left", func=func).invoke({}, config)
        assert command.update == {"notes": ["left"]}


class TestErrorHandler:
    """Test converting node failures into routes."""

    @pytest.mark.asyncio
    async def test_async_recovery(self, config: RunConfig):
        @error_handler(goto="fallback", channel="last_error")
        async def fetch(state):
            raise ConnectionError("offline")

        command = await FunctionNode(id="fetch", func=fetch).invoke({}, config)
        assert command.update == {"last_error": "ConnectionError: offline"}
        assert command.goto == ("fallback",)

    @pytest.mark.asyncio
    async def test_sync_recovery_without_channel(self, config: RunConfig):
        @error_handler(goto="fallback", channel=None)
        def parse(state):
            raise ValueError("bad input")

        command = await FunctionNode(id="parse", func=parse).invoke({}, config)
        assert command.update is None
        assert command.goto == ("fallback",)

    def test_unlisted_exceptions_propagate(self):
        @error_handler(exceptions=(KeyError,))
        def parse(state):
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            parse({})

    def test_interrupts_propagate(self):
        @error_handler()
        def ask(state):
            raise GraphInterrupt([])

        with pytest.raises(GraphInterrupt):
            ask({})

    def test_success_passes_through(self):
        @error_handler(goto="fallback")
        def ok(state):
            return {"out": 1}

        assert ok({}) == {"out": 1}
