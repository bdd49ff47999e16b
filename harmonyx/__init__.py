# SPDX-License-Identifier: Apache-2.0
"""
harmonyx: Harmony stream decoding for gpt-oss completions

Turns raw, possibly chunked Harmony output from a completion endpoint into
typed events, and recovers usable JSON from imperfect model output.

Features:
- Complete-buffer transcript parser with typed errors
- Chunk-invariant incremental decoder
- SSE frame splitting and stream event normalization
- Plan/batch final-channel extraction
- JSON salvage for wrapped, fenced or double-encoded payloads
"""

from harmonyx._version import __version__

from harmonyx.adapter.decoder import HarmonyDecoder
from harmonyx.adapter.harmony import (
    AssistantMessage,
    HarmonyParseResult,
    ToolMessage,
    parse_harmony_turn,
)
from harmonyx.adapter.plan import decode_batch, decode_plan, extract_final
from harmonyx.api.adapters.sse import FrameSplitter
from harmonyx.api.normalizer import StreamEventNormalizer, normalize_stream
from harmonyx.api.stream_models import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    ReturnEvent,
    StreamEvent,
    ToolCallEvent,
)
from harmonyx.exceptions import (
    HarmonyErrorCode,
    HarmonyParseError,
    HarmonyxError,
    JsonSalvageError,
)
from harmonyx.utils.json_salvage import JsonOutcome, normalize, parse_loose, salvage_json

__all__ = [
    # Batch parsing
    "parse_harmony_turn",
    "HarmonyParseResult",
    "AssistantMessage",
    "ToolMessage",
    # Final channel
    "extract_final",
    "decode_plan",
    "decode_batch",
    # Streaming
    "HarmonyDecoder",
    "FrameSplitter",
    "StreamEventNormalizer",
    "normalize_stream",
    "StreamEvent",
    "ContentEvent",
    "ToolCallEvent",
    "ReturnEvent",
    "DoneEvent",
    "ErrorEvent",
    # JSON salvage
    "normalize",
    "parse_loose",
    "salvage_json",
    "JsonOutcome",
    # Errors
    "HarmonyxError",
    "HarmonyErrorCode",
    "HarmonyParseError",
    "JsonSalvageError",
    # Version
    "__version__",
]
