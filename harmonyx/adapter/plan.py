# SPDX-License-Identifier: Apache-2.0
"""
Final-channel extraction for plan and batch responses.

Planner and actor turns end with a single assistant message on the final
channel, closed by <|return|>, whose body is the JSON document the rest of the
system consumes. decode_plan and decode_batch run the complete-buffer parser
and enforce that contract; neither raises.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from ..exceptions import HarmonyErrorCode, HarmonyParseError
from .harmony import (
    DEFAULT_CHUNK_MARKER,
    START_TOKEN,
    AssistantMessage,
    HarmonyMessage,
    parse_harmony_turn,
)

logger = logging.getLogger(__name__)

DEFAULT_FINAL_CHANNEL = "final"


@dataclass(frozen=True)
class FinalText:
    """Text of the terminal final-channel message."""

    text: str
    channel: str
    stop: str


@dataclass
class PlanResult:
    """Result of decode_plan: the plan text or a single error."""

    messages: List[HarmonyMessage] = field(default_factory=list)
    plan_text: Optional[str] = None
    channel: Optional[str] = None
    error: Optional[HarmonyParseError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"error": self.error.to_dict()}
        return {
            "messages": [msg.to_dict() for msg in self.messages],
            "plan_text": self.plan_text,
            "channel": self.channel,
        }


@dataclass
class BatchResult:
    """Result of decode_batch: the batch text or a single error."""

    messages: List[HarmonyMessage] = field(default_factory=list)
    batch_text: Optional[str] = None
    channel: Optional[str] = None
    error: Optional[HarmonyParseError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"error": self.error.to_dict()}
        return {
            "messages": [msg.to_dict() for msg in self.messages],
            "batch_text": self.batch_text,
            "channel": self.channel,
        }


def extract_final(
    messages: Sequence[HarmonyMessage],
    final_channel: str = DEFAULT_FINAL_CHANNEL,
) -> Optional[FinalText]:
    """
    Find the most recent assistant message on the final channel.

    Args:
        messages: Parsed messages in transcript order.
        final_channel: Name of the user-visible final channel.

    Returns:
        FinalText with the trimmed content, or None if there is no such message.
    """
    for message in reversed(messages):
        if isinstance(message, AssistantMessage) and message.channel == final_channel:
            return FinalText(
                text=message.content.strip(),
                channel=message.channel,
                stop=message.stop,
            )
    return None


def _is_bare_json_literal(text: str) -> bool:
    if START_TOKEN in text:
        return False
    stripped = text.strip()
    if len(stripped) < 2:
        return False
    if (stripped[0], stripped[-1]) not in (("{", "}"), ("[", "]")):
        return False
    try:
        json.loads(stripped)
    except (json.JSONDecodeError, RecursionError):
        return False
    return True


def _decode_final(
    raw: str,
    label: str,
    final_channel: str,
    chunk_marker: str,
) -> tuple[List[HarmonyMessage], Optional[FinalText], Optional[HarmonyParseError]]:
    if _is_bare_json_literal(raw):
        # Responses that never went through Harmony framing
        text = raw.strip()
        logger.debug(f"Harmony {label}: no protocol tokens, treating input as final JSON")
        implicit = AssistantMessage(channel=final_channel, content=text, stop="return")
        return [implicit], FinalText(text=text, channel=final_channel, stop="return"), None

    parsed = parse_harmony_turn(raw, chunk_marker)
    if parsed.error is not None:
        return [], None, parsed.error

    final = extract_final(parsed.messages, final_channel)
    if final is None:
        return [], None, HarmonyParseError(
            HarmonyErrorCode.FINAL_MISSING,
            f"Harmony {label} missing final channel output",
        )
    if final.stop != "return":
        return [], None, HarmonyParseError(
            HarmonyErrorCode.FINAL_NOT_RETURN,
            f"Harmony {label} final message ended with <|{final.stop}|> instead of <|return|>",
        )
    return parsed.messages, final, None


def decode_plan(
    raw: str,
    final_channel: str = DEFAULT_FINAL_CHANNEL,
    chunk_marker: str = DEFAULT_CHUNK_MARKER,
) -> PlanResult:
    """
    Decode a planner response into its plan text.

    Args:
        raw: Complete model output.
        final_channel: Channel carrying the plan.
        chunk_marker: Transport chunk marker to strip.

    Returns:
        PlanResult with plan_text set, or error set.
    """
    messages, final, error = _decode_final(raw, "plan", final_channel, chunk_marker)
    if error is not None:
        logger.info(f"Plan decode failed: {error.code.value}: {error.message}")
        return PlanResult(error=error)
    return PlanResult(messages=messages, plan_text=final.text, channel=final.channel)


def decode_batch(
    raw: str,
    final_channel: str = DEFAULT_FINAL_CHANNEL,
    chunk_marker: str = DEFAULT_CHUNK_MARKER,
) -> BatchResult:
    """Decode an actor response into its batch text. See decode_plan."""
    messages, final, error = _decode_final(raw, "batch", final_channel, chunk_marker)
    if error is not None:
        logger.info(f"Batch decode failed: {error.code.value}: {error.message}")
        return BatchResult(error=error)
    return BatchResult(messages=messages, batch_text=final.text, channel=final.channel)
