"""Message channels.

``Message`` extends mirascope's ``BaseMessageParam`` with an ``id`` so that
``add_messages`` can update or delete earlier messages instead of only
appending to the history.
"""

import uuid
from typing import Annotated, Any, List, Optional, TypedDict, Union

from mirascope.core import BaseMessageParam
from pydantic import BaseModel

REMOVE_ALL_MESSAGES = "__remove_all__"


class Message(BaseMessageParam):
    """A chat message with a stable id."""
    id: Optional[str] = None
    name: Optional[str] = None


class RemoveMessage(BaseModel):
    """Write this to a message channel to delete the message with ``id``."""
    id: str


MessageLike = Union[Message, RemoveMessage, BaseMessageParam, dict, tuple, str]


def _coerce(value: Any) -> Union[Message, RemoveMessage]:
    if isinstance(value, (Message, RemoveMessage)):
        return value
    if isinstance(value, BaseMessageParam):
        return Message(role=value.role, content=value.content)
    if isinstance(value, str):
        return Message(role="user", content=value)
    if isinstance(value, tuple) and len(value) == 2:
        role, content = value
        return Message(role=role, content=content)
    if isinstance(value, dict):
        if value.get("type") == "remove":
            return RemoveMessage(id=value["id"])
        return Message.model_validate(value)
    raise TypeError(f"Cannot convert {type(value).__name__} to a message")


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)) and not (
        isinstance(value, tuple) and len(value) == 2 and isinstance(value[0], str)
    ):
        return list(value)
    return [value]


def _with_id(message: Union[Message, RemoveMessage]) -> Union[Message, RemoveMessage]:
    if isinstance(message, Message) and message.id is None:
        return message.model_copy(update={"id": uuid.uuid4().hex})
    return message


def add_messages(current: Any, update: Any) -> List[Message]:
    """Merge two message lists by id.

    New ids are appended, known ids are replaced in place, and
    ``RemoveMessage(id)`` deletes (``REMOVE_ALL_MESSAGES`` clears the history).

    Raises:
        ValueError: If a RemoveMessage targets an unknown id
    """
    left = [_with_id(_coerce(m)) for m in _as_list(current)]
    right = [_with_id(_coerce(m)) for m in _as_list(update)]

    merged: List[Message] = [m for m in left if isinstance(m, Message)]
    index = {m.id: i for i, m in enumerate(merged)}
    removed = set()

    for message in right:
        if isinstance(message, RemoveMessage):
            if message.id == REMOVE_ALL_MESSAGES:
                merged, index, removed = [], {}, set()
                continue
            if message.id not in index:
                raise ValueError(
                    f"Attempting to delete a message with an id that doesn't exist ('{message.id}')"
                )
            removed.add(message.id)
        elif message.id in index:
            merged[index[message.id]] = message
            removed.discard(message.id)
        else:
            index[message.id] = len(merged)
            merged.append(message)

    return [m for m in merged if m.id not in removed]


class MessagesState(TypedDict):
    """Schema with a single ``messages`` channel reduced by ``add_messages``."""
    messages: Annotated[List[Message], add_messages]
