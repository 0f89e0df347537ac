"""State management for the graph system.

This module provides:
1. Channel: one named slot of the state schema (type, default, validator)
2. StateSchema: channels and reducers resolved once from a schema type
3. State: an immutable snapshot of channel values, merged only via reducers

Schemas are declared as a TypedDict, a plain annotated class, or a pydantic
BaseModel. Reducers are attached with ``Annotated``:

    class Research(TypedDict):
        topic: str
        notes: Annotated[list, append]

A superstep's writes are merged by ``State.apply``; several writers to a
channel without a reducer raise ``ConcurrentUpdateConflict`` and nothing is
committed.
"""

import copy
import inspect
from typing import (
    Annotated,
    Any,
    Callable,
    ClassVar,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    get_args,
    get_origin,
    get_type_hints,
    is_typeddict,
)

from pydantic import BaseModel, TypeAdapter, ValidationError

from stepgraph.core.errors import (
    ConcurrentUpdateConflict,
    GraphValidationError,
    SchemaViolation,
)
from stepgraph.core.graph.reducers import Reducer, ReducerRegistry
from stepgraph.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.STATE)


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def _class_default(schema: type, name: str) -> Any:
    """Default declared on the schema class body, or MISSING.

    TypedDicts carry no defaults. Plain classes are searched through their
    own bodies only, so inherited ``dict``/``object`` attributes and methods
    never become channel values.
    """
    if is_typeddict(schema) or not isinstance(schema, type):
        return MISSING
    for klass in schema.__mro__:
        if klass in (object, dict):
            break
        if name in vars(klass):
            value = vars(klass)[name]
            if inspect.isroutine(value) or hasattr(value, "__get__"):
                return MISSING
            return value
    return MISSING


# Reducer channels without a default start from the empty value of these types
_EMPTY_CONTAINERS = (list, dict, set, frozenset, tuple, int, float, str)


def _is_reducer(meta: Any) -> bool:
    return callable(meta) and not isinstance(meta, type)


def _split_annotated(hint: Any) -> Tuple[Any, Tuple[Any, ...]]:
    if get_origin(hint) is Annotated:
        base, *metadata = get_args(hint)
        return base, tuple(metadata)
    return hint, ()


class Channel:
    """A named, typed slot of the state."""

    def __init__(
        self,
        name: str,
        annotation: Any,
        metadata: Sequence[Any] = (),
        default: Any = MISSING,
        default_factory: Optional[Callable[[], Any]] = None,
    ):
        self.name = name
        self.annotation = annotation
        self.default = default
        self.default_factory = default_factory
        constraints = tuple(metadata)
        target = Annotated[(annotation, *constraints)] if constraints else annotation
        self._adapter = TypeAdapter(target)

    def initial(self, has_reducer: bool) -> Any:
        """Value the channel holds before any write, or MISSING."""
        if self.default_factory is not None:
            return self.default_factory()
        if self.default is not MISSING:
            return copy.deepcopy(self.default)
        if has_reducer:
            origin = get_origin(self.annotation) or self.annotation
            if origin in _EMPTY_CONTAINERS:
                return origin()
        return MISSING

    def validate(self, value: Any) -> Any:
        """Validate (and coerce) a value for this channel.

        Raises:
            SchemaViolation: If the value does not match the channel type
        """
        try:
            return self._adapter.validate_python(value)
        except ValidationError as exc:
            raise SchemaViolation(
                f"Invalid value for channel '{self.name}': {exc.errors(include_url=False)}",
                channel=self.name,
            ) from exc

    def __repr__(self) -> str:
        return f"Channel({self.name!r}, {self.annotation!r})"


class StateSchema:
    """Channels and reducers of a state type, resolved once."""

    def __init__(self, schema: type, reducers: Optional[Mapping[str, Reducer]] = None):
        self.schema = schema
        self.is_model = isinstance(schema, type) and issubclass(schema, BaseModel)
        self.channels: Dict[str, Channel] = {}
        self.reducers = ReducerRegistry()

        for name, channel, reducer in self._parse(schema):
            self.channels[name] = channel
            if reducer is not None:
                self.reducers.register(name, reducer)

        for name, reducer in (reducers or {}).items():
            if name not in self.channels:
                raise GraphValidationError(f"Reducer registered for undeclared channel '{name}'")
            self.reducers.register(name, reducer)
        self.reducers.freeze()

        logger.debug(
            f"Resolved schema {getattr(schema, '__name__', schema)}: "
            f"{list(self.channels)} (reducers: {list(self.reducers.channels())})"
        )

    @staticmethod
    def _parse(schema: type) -> Iterator[Tuple[str, Channel, Optional[Reducer]]]:
        try:
            hints = get_type_hints(schema, include_extras=True)
        except (NameError, TypeError) as exc:
            raise GraphValidationError(f"Cannot resolve annotations of {schema!r}: {exc}") from exc

        if isinstance(schema, type) and issubclass(schema, BaseModel):
            for name, field in schema.model_fields.items():
                _, hint_meta = _split_annotated(hints.get(name, field.annotation))
                reducers = [m for m in (*hint_meta, *field.metadata) if _is_reducer(m)]
                constraints = [m for m in field.metadata if not _is_reducer(m)]
                channel = Channel(
                    name,
                    field.annotation,
                    metadata=constraints,
                    default=MISSING if field.is_required() or field.default_factory else field.default,
                    default_factory=field.default_factory,
                )
                yield name, channel, reducers[-1] if reducers else None
            return

        for name, hint in hints.items():
            if name.startswith("_") or get_origin(hint) is ClassVar:
                continue
            base, metadata = _split_annotated(hint)
            reducers = [m for m in metadata if _is_reducer(m)]
            constraints = [m for m in metadata if not _is_reducer(m)]
            channel = Channel(name, base, metadata=constraints, default=_class_default(schema, name))
            yield name, channel, reducers[-1] if reducers else None

    def initial_values(self) -> Dict[str, Any]:
        values = {}
        for name, channel in self.channels.items():
            value = channel.initial(self.reducers.has_reducer(name))
            if value is not MISSING:
                values[name] = value
        return values

    def restore(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        """Re-validate persisted values; unknown channels are dropped."""
        restored = {}
        for name, value in values.items():
            if name not in self.channels:
                logger.warning(f"Dropping value for undeclared channel '{name}' while restoring state")
                continue
            restored[name] = self.channels[name].validate(value)
        return restored

    def coerce_update(self, update: Any, writer: Optional[str] = None) -> Dict[str, Any]:
        """Turn a node's update into a ``{channel: value}`` dict."""
        if update is None:
            return {}
        if isinstance(update, BaseModel):
            return {name: getattr(update, name) for name in update.model_fields_set}
        if isinstance(update, Mapping):
            return dict(update)
        raise SchemaViolation(
            f"Expected a mapping update, got {type(update).__name__}",
            node=writer,
        )

    def view(self, values: Mapping[str, Any]) -> Any:
        """What a node or router receives: an isolated copy of the values."""
        copied = copy.deepcopy(dict(values))
        if self.is_model:
            return self.schema.model_construct(**copied)
        return copied


class State:
    """Immutable snapshot of channel values.

    Attributes:
        schema: The StateSchema the values conform to
    """

    __slots__ = ("schema", "_values")

    def __init__(self, schema: StateSchema, values: Optional[Mapping[str, Any]] = None):
        self.schema = schema
        self._values: Dict[str, Any] = (
            dict(values) if values is not None else schema.initial_values()
        )

    @classmethod
    def restore(cls, schema: StateSchema, values: Mapping[str, Any]) -> "State":
        return cls(schema, schema.restore(values))

    def get(self, channel: str) -> Any:
        """Current value of ``channel`` (``None`` if never written)."""
        if channel not in self.schema.channels:
            raise SchemaViolation(f"Unknown channel '{channel}'", channel=channel)
        return self._values.get(channel)

    def merge(self, updates: Any, writer: str = "__merge__") -> "State":
        """Merge one update and return the new state."""
        return self.apply([(writer, updates)])

    def apply(self, writes: Sequence[Tuple[str, Any]]) -> "State":
        """Merge all writes of one superstep into a new State.

        Args:
            writes: ``(writer, update)`` pairs in task order

        Raises:
            SchemaViolation: Undeclared channel, bad value, or reducer failure
            ConcurrentUpdateConflict: Several writers on a channel without reducer
        """
        grouped: Dict[str, List[Tuple[str, Any]]] = {}
        for writer, update in writes:
            for channel, value in self.schema.coerce_update(update, writer).items():
                if channel not in self.schema.channels:
                    raise SchemaViolation(
                        f"Update from '{writer}' targets undeclared channel '{channel}'",
                        node=writer,
                        channel=channel,
                    )
                grouped.setdefault(channel, []).append((writer, value))

        values = dict(self._values)
        reducers = self.schema.reducers
        for channel, channel_writes in grouped.items():
            if not reducers.has_reducer(channel):
                if len(channel_writes) > 1:
                    raise ConcurrentUpdateConflict(channel, [w for w, _ in channel_writes])
                merged = channel_writes[0][1]
            else:
                reducer = reducers.resolve(channel)
                pending = iter(channel_writes)
                merged = values[channel] if channel in values else next(pending)[1]
                for writer, value in pending:
                    try:
                        merged = reducer(merged, value)
                    except (TypeError, ValueError) as exc:
                        raise SchemaViolation(
                            f"Reducer for channel '{channel}' rejected update from '{writer}': {exc}",
                            node=writer,
                            channel=channel,
                        ) from exc
            values[channel] = self.schema.channels[channel].validate(merged)

        return State(self.schema, values)

    def to_values(self) -> Dict[str, Any]:
        """Shallow copy of the raw values (for checkpoints)."""
        return dict(self._values)

    def dump(self) -> Dict[str, Any]:
        """Deep copy of the values, safe to hand to callers."""
        return copy.deepcopy(self._values)

    def view(self) -> Any:
        return self.schema.view(self._values)

    def __contains__(self, channel: str) -> bool:
        return channel in self._values

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, State):
            return NotImplemented
        return self.schema is other.schema and self._values == other._values

    def __repr__(self) -> str:
        return f"State({self._values!r})"
