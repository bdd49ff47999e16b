# SPDX-License-Identifier: Apache-2.0
"""
Adapters for the Harmony (gpt-oss) output format.

This module provides the complete-buffer parser, the incremental decoder and
final-channel extraction. The openai-harmony backed token feeder lives in
harmonyx.adapter.tokens and is imported on demand.
"""

from .decoder import (
    HarmonyDecoder,
    HarmonyError,
    HarmonyEvent,
    HarmonyReturn,
    HarmonyText,
    HarmonyToolCall,
    HarmonyToolResult,
)
from .harmony import (
    AssistantMessage,
    HarmonyHeader,
    HarmonyMessage,
    HarmonyParseResult,
    ToolMessage,
    parse_harmony_turn,
)
from .plan import BatchResult, FinalText, PlanResult, decode_batch, decode_plan, extract_final

__all__ = [
    "HarmonyDecoder",
    "HarmonyEvent",
    "HarmonyText",
    "HarmonyToolCall",
    "HarmonyReturn",
    "HarmonyToolResult",
    "HarmonyError",
    "HarmonyHeader",
    "HarmonyMessage",
    "AssistantMessage",
    "ToolMessage",
    "HarmonyParseResult",
    "parse_harmony_turn",
    "FinalText",
    "PlanResult",
    "BatchResult",
    "extract_final",
    "decode_plan",
    "decode_batch",
]
