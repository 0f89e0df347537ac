"""Tests for graph state management.

This module tests the state container including:
- Schema resolution from TypedDicts, annotated classes and Pydantic models
- Immutable merges and reducer folding
- Concurrent write conflicts
- Validation errors for undeclared channels and bad values
"""

from typing import Annotated, List, Optional, TypedDict

import pytest
from pydantic import BaseModel, Field

from stepgraph.core.errors import (
    ConcurrentUpdateConflict,
    GraphValidationError,
    InvalidUpdateError,
    SchemaViolation,
)
from stepgraph.core.graph.reducers import add, append
from stepgraph.core.graph.state import State, StateSchema


class Research(TypedDict):
    topic: str
    notes: Annotated[list, append]
    count: int


class Counter(BaseModel):
    total: Annotated[int, add] = 0
    label: str = "none"
    tags: List[str] = Field(default_factory=list)


class Plain:
    name: str
    retries: int = 3
    _private: str


class Basket(TypedDict):
    items: Annotated[list, append]
    values: dict
    copy: int


class Inventory(dict):
    items: Annotated[list, append]
    keys: str
    limit: int = 5


@pytest.fixture
def schema() -> StateSchema:
    """Fixture providing a TypedDict schema."""
    return StateSchema(Research)


@pytest.fixture
def state(schema: StateSchema) -> State:
    """Fixture providing an initial state."""
    return State(schema)


class TestStateSchema:
    """Test schema resolution."""

    def test_typed_dict_channels(self, schema: StateSchema):
        """Test channels and reducers are read from annotations."""
        assert list(schema.channels) == ["topic", "notes", "count"]
        assert schema.reducers.has_reducer("notes")
        assert not schema.reducers.has_reducer("topic")

    def test_initial_values(self, schema: StateSchema):
        """Test reducer channels start empty and plain channels start unset."""
        assert schema.initial_values() == {"notes": []}

    def test_pydantic_schema(self):
        """Test defaults and reducers of a Pydantic schema."""
        schema = StateSchema(Counter)
        assert schema.is_model
        assert schema.reducers.resolve("total") is add
        assert schema.initial_values() == {"total": 0, "label": "none", "tags": []}

    def test_plain_class_schema(self):
        """Test annotated classes; private names are skipped."""
        schema = StateSchema(Plain)
        assert list(schema.channels) == ["name", "retries"]
        assert schema.initial_values() == {"retries": 3}

    def test_typed_dict_channels_named_like_dict_methods(self):
        """Test dict method names are plain channels without defaults."""
        schema = StateSchema(Basket)
        assert list(schema.channels) == ["items", "values", "copy"]
        assert schema.initial_values() == {"items": []}

    def test_dict_subclass_ignores_inherited_methods(self):
        """Test only defaults written in the class body are used."""
        schema = StateSchema(Inventory)
        assert schema.initial_values() == {"items": [], "limit": 5}

    def test_items_channel_merges_parallel_writes(self):
        """Test an append channel named items folds writers from an empty list."""
        state = State(StateSchema(Basket)).merge({"items": []})
        merged = state.apply([("a", {"items": [1]}), ("b", {"items": [2]})])
        assert merged.get("items") == [1, 2]

    def test_extra_reducers(self):
        """Test reducers passed explicitly."""
        schema = StateSchema(Research, reducers={"count": add})
        assert schema.reducers.resolve("count") is add

    def test_reducer_for_unknown_channel(self):
        """Test reducers must target declared channels."""
        with pytest.raises(GraphValidationError):
            StateSchema(Research, reducers={"missing": add})

    def test_model_view(self):
        """Test nodes of a Pydantic schema receive model instances."""
        schema = StateSchema(Counter)
        view = State(schema).view()
        assert isinstance(view, Counter)
        assert view.total == 0


class TestStateMerge:
    """Test merging updates into state."""

    def test_get_unset_channel(self, state: State):
        """Test unset channels read as None."""
        assert state.get("topic") is None

    def test_get_unknown_channel(self, state: State):
        """Test reading an undeclared channel."""
        with pytest.raises(SchemaViolation):
            state.get("missing")

    def test_merge_is_immutable(self, state: State):
        """Test merge returns a new state and leaves the original alone."""
        updated = state.merge({"topic": "graphs"})
        assert updated.get("topic") == "graphs"
        assert state.get("topic") is None
        assert updated is not state

    def test_merge_uses_reducer(self, state: State):
        """Test reducer channels accumulate across merges."""
        updated = state.merge({"notes": ["a"]}).merge({"notes": ["b"]})
        assert updated.get("notes") == ["a", "b"]

    def test_merge_overwrites_without_reducer(self, state: State):
        """Test plain channels are replaced."""
        updated = state.merge({"count": 1}).merge({"count": 5})
        assert updated.get("count") == 5

    def test_merge_none(self, state: State):
        """Test a None update writes nothing."""
        assert state.merge(None) == state

    def test_merge_model_update(self):
        """Test only the fields set on a model update are written."""
        state = State(StateSchema(Counter)).merge({"label": "x"})
        updated = state.merge(Counter(total=2))
        assert updated.get("total") == 2
        assert updated.get("label") == "x"

    def test_undeclared_channel(self, state: State):
        """Test updates to undeclared channels are rejected."""
        with pytest.raises(SchemaViolation) as exc_info:
            state.merge({"bogus": 1})
        assert exc_info.value.channel == "bogus"

    def test_invalid_value(self, state: State):
        """Test values are validated against the channel type."""
        with pytest.raises(SchemaViolation):
            state.merge({"count": "many"})

    def test_non_mapping_update(self, state: State):
        """Test updates must be mappings."""
        with pytest.raises(SchemaViolation):
            state.merge(42)

    def test_schema_violation_is_invalid_update(self, state: State):
        """Test the error hierarchy."""
        with pytest.raises(InvalidUpdateError):
            state.merge({"bogus": 1})

    def test_restore_drops_unknown_channels(self, schema: StateSchema):
        """Test restoring values written by an older schema."""
        state = State.restore(schema, {"topic": "t", "retired": True})
        assert state.to_values() == {"topic": "t"}

    def test_dump_is_a_copy(self, state: State):
        """Test dumped values do not alias the state."""
        state = state.merge({"notes": ["a"]})
        dumped = state.dump()
        dumped["notes"].append("b")
        assert state.get("notes") == ["a"]


class TestSuperstepApply:
    """Test merging all writes of a superstep."""

    def test_parallel_append(self, state: State):
        """Test two parallel writers on a reducer channel both land."""
        updated = state.apply([("left", {"notes": ["L"]}), ("right", {"notes": ["R"]})])
        assert sorted(updated.get("notes")) == ["L", "R"]

    def test_parallel_conflict(self, state: State):
        """Test two parallel writers on a plain channel conflict."""
        start = state.merge({"count": 0})
        with pytest.raises(ConcurrentUpdateConflict) as exc_info:
            start.apply([("left", {"count": 1}), ("right", {"count": 2})])
        assert exc_info.value.channel == "count"
        assert exc_info.value.writers == ["left", "right"]
        assert start.get("count") == 0

    def test_conflict_commits_nothing(self, state: State):
        """Test a conflict on one channel discards writes to others."""
        with pytest.raises(ConcurrentUpdateConflict):
            state.apply([
                ("left", {"count": 1, "notes": ["L"]}),
                ("right", {"count": 2}),
            ])
        assert state.get("notes") == []

    def test_associative_reducer_order_independent(self):
        """Test an associative, commutative reducer gives the same result in any order."""
        state = State(StateSchema(Counter))
        writes = [("a", {"total": 1}), ("b", {"total": 2}), ("c", {"total": 3})]
        forward = state.apply(writes)
        backward = state.apply(list(reversed(writes)))
        assert forward.get("total") == backward.get("total") == 6

    def test_reducer_failure(self):
        """Test a reducer rejecting a value becomes a SchemaViolation."""
        state = State(StateSchema(Counter))
        with pytest.raises(SchemaViolation):
            state.apply([("a", {"total": "x"})])

    @pytest.mark.parametrize("value", [None, [], ["x"]])
    def test_optional_channel(self, value: Optional[list]):
        """Test optional channels accept None."""

        class Maybe(TypedDict):
            items: Optional[list]

        state = State(StateSchema(Maybe)).merge({"items": value})
        assert state.get("items") == value
