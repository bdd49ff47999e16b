# SPDX-License-Identifier: Apache-2.0
"""
Pydantic models for normalized stream events (v1).

Every decode session produces zero or more content, tool_call and return
events followed by exactly one done event, or is cut short by a single
terminal error event.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

# =============================================================================
# Events
# =============================================================================


class ContentEvent(BaseModel):
    """A text fragment on a channel."""

    type: Literal["content"] = "content"
    channel: str
    text: str


class ToolCallEvent(BaseModel):
    """A tool invocation, complete or as an argument delta."""

    type: Literal["tool_call"] = "tool_call"
    index: int
    id: str | None = None
    name: str | None = None
    arguments: Any = ""  # serialized text for complete calls, fragment for deltas
    is_delta: bool = False


class ReturnEvent(BaseModel):
    """The final result of the turn."""

    type: Literal["return"] = "return"
    channel: str
    name: str | None = None
    result: Any = None


class DoneEvent(BaseModel):
    """End of a successful session."""

    type: Literal["done"] = "done"


class ErrorEvent(BaseModel):
    """Terminal failure of a session."""

    type: Literal["error"] = "error"
    code: str
    detail: str | None = None


# Union type for all stream events
StreamEvent = Annotated[
    Union[ContentEvent, ToolCallEvent, ReturnEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]

_stream_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


def parse_stream_event(data: dict[str, Any] | str) -> StreamEvent:
    """
    Validate a wire dictionary (or JSON string) into a StreamEvent.

    Raises:
        pydantic.ValidationError: If the payload matches no event type.
    """
    if isinstance(data, str):
        return _stream_event_adapter.validate_json(data)
    return _stream_event_adapter.validate_python(data)


def to_wire(event: BaseModel) -> dict[str, Any]:
    """Dump an event for the wire, omitting unset optional fields."""
    return event.model_dump(exclude_none=True)


def is_terminal(event: BaseModel) -> bool:
    """True for done and error events."""
    return isinstance(event, (DoneEvent, ErrorEvent))
