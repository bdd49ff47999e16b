# SPDX-License-Identifier: Apache-2.0
"""
Streaming API surface for harmonyx.

- Pydantic models for normalized stream events
- Frame-to-event normalization
- Tool-call argument collection
"""

from .normalizer import StreamEventNormalizer, normalize_stream, serialize_arguments
from .stream_models import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    ReturnEvent,
    StreamEvent,
    ToolCallEvent,
    parse_stream_event,
    to_wire,
)
from .tool_args import CollectedToolCall, collect_all_tool_calls, collect_tool_args

__all__ = [
    "StreamEvent",
    "ContentEvent",
    "ToolCallEvent",
    "ReturnEvent",
    "DoneEvent",
    "ErrorEvent",
    "parse_stream_event",
    "to_wire",
    "StreamEventNormalizer",
    "normalize_stream",
    "serialize_arguments",
    "CollectedToolCall",
    "collect_tool_args",
    "collect_all_tool_calls",
]
