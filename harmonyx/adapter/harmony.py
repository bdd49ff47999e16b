# SPDX-License-Identifier: Apache-2.0
"""
Harmony transcript parser for gpt-oss style completions.

Harmony protocol uses special tokens to structure messages:
- <|start|>: Begin message header
- <|channel|>: Mark channel type
- <|message|>: Transition to content
- <|end|>: End message
- <|return|>: Model completion signal
- <|call|>: Tool invocation signal
- <|constrain|>: Content-type constraint inside the header

Message structure: <|start|>{role}<|channel|>{channel} [to=..] [<|constrain|>..]<|message|>{content}<|end|>

Channels:
- final: User-visible response (the plan/batch JSON)
- analysis: Chain-of-thought reasoning
- commentary: Tool/function calls and progress notes

This module holds the token constants, the message types shared with the
incremental decoder, and the complete-buffer parser. Scan positions are local
to each call so parses never share matcher state.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Literal, Optional, Union

from ..exceptions import HarmonyErrorCode, HarmonyParseError
from ..utils.json_salvage import JsonOutcome, decode_json_strict

logger = logging.getLogger(__name__)

START_TOKEN = "<|start|>"
MESSAGE_TOKEN = "<|message|>"
CHANNEL_TOKEN = "<|channel|>"
CONSTRAIN_TOKEN = "<|constrain|>"
END_TOKEN = "<|end|>"
CALL_TOKEN = "<|call|>"
RETURN_TOKEN = "<|return|>"
ROUTING_PREFIX = "to="

DEFAULT_CHUNK_MARKER = "<<<CHUNK>>>"

StopKind = Literal["end", "call", "return"]

STOP_TOKENS = {END_TOKEN: "end", CALL_TOKEN: "call", RETURN_TOKEN: "return"}

# Harmony special tokens recognised in text
HARMONY_SPECIAL_TOKENS = [
    START_TOKEN,
    END_TOKEN,
    MESSAGE_TOKEN,
    CHANNEL_TOKEN,
    RETURN_TOKEN,
    CALL_TOKEN,
    CONSTRAIN_TOKEN,
]

_TOKEN_NAMES = frozenset(token[2:-2] for token in HARMONY_SPECIAL_TOKENS)

SENTINEL_PATTERN = re.compile(r"<\|(end|call|return)\|>")

# Whitespace injected inside a token, e.g. "<| start|>" or "<|re turn|>"
_SPACED_TOKEN_PATTERN = re.compile(r"<\|\s*([a-z]+)(?:\s+([a-z]+))?\s*\|>", re.IGNORECASE)


def _collapse_token(match: "re.Match[str]") -> str:
    name = (match.group(1) + (match.group(2) or "")).lower()
    if name in _TOKEN_NAMES:
        return f"<|{name}|>"
    return match.group(0)


def normalize_transcript(text: str, chunk_marker: str = DEFAULT_CHUNK_MARKER) -> str:
    """
    Remove transport chunk markers and collapse whitespace inside tokens.

    Repeats until stable so the result does not depend on how the text was
    split before normalization.

    Args:
        text: Raw transcript text.
        chunk_marker: Chunk-boundary marker inserted by the transport.

    Returns:
        Normalized transcript text.
    """
    while True:
        out = text.replace(chunk_marker, "") if chunk_marker else text
        if "<|" in out:
            out = _SPACED_TOKEN_PATTERN.sub(_collapse_token, out)
        if out == text:
            return out
        text = out


def contains_protocol_token(text: str) -> bool:
    """True if text contains any Harmony special token."""
    return any(token in text for token in HARMONY_SPECIAL_TOKENS)


# =============================================================================
# Message Types
# =============================================================================


@dataclass(frozen=True)
class HarmonyHeader:
    """Parsed message header."""

    role: Literal["assistant", "tool"]
    channel: str
    name: Optional[str] = None
    to: Optional[str] = None
    constraint: Optional[str] = None


@dataclass(frozen=True)
class AssistantMessage:
    """A message authored by the assistant."""

    channel: str
    content: str
    stop: StopKind
    to: Optional[str] = None
    constraint: Optional[str] = None
    arguments: Optional[JsonOutcome] = None
    role: Literal["assistant"] = field(default="assistant", init=False)

    @property
    def args(self) -> Any:
        """Parsed call arguments, or None when absent or unparseable."""
        if self.arguments is not None and self.arguments.parsed:
            return self.arguments.value
        return None

    @property
    def raw_args(self) -> Optional[str]:
        """Raw call argument text for call-terminated messages."""
        return self.arguments.raw if self.arguments is not None else None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        data: dict[str, Any] = {"role": self.role, "channel": self.channel}
        if self.to is not None:
            data["to"] = self.to
        if self.constraint is not None:
            data["constraint"] = self.constraint
        if self.arguments is not None:
            data["raw_args"] = self.arguments.raw
            if self.arguments.parsed:
                data["args"] = self.arguments.value
        else:
            data["content"] = self.content
        data["stop"] = self.stop
        return data


@dataclass(frozen=True)
class ToolMessage:
    """A message authored by a tool (its result)."""

    name: str
    channel: str
    stop: StopKind
    result: JsonOutcome
    constraint: Optional[str] = None
    role: Literal["tool"] = field(default="tool", init=False)

    @property
    def content(self) -> Any:
        """Parsed JSON result, or the trimmed raw text if it was not JSON."""
        return self.result.value_or_raw

    @property
    def raw_args(self) -> str:
        return self.result.raw

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        data: dict[str, Any] = {
            "role": self.role,
            "name": self.name,
            "channel": self.channel,
            "content": self.content,
            "raw_args": self.raw_args,
        }
        if self.constraint is not None:
            data["constraint"] = self.constraint
        data["stop"] = self.stop
        return data


HarmonyMessage = Union[AssistantMessage, ToolMessage]


@dataclass
class HarmonyParseResult:
    """Result of parse_harmony_turn: the messages or a single error."""

    messages: List[HarmonyMessage] = field(default_factory=list)
    error: Optional[HarmonyParseError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        """Raise the stored HarmonyParseError, if any."""
        if self.error is not None:
            raise self.error

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"error": self.error.to_dict()}
        return {"messages": [msg.to_dict() for msg in self.messages]}


# =============================================================================
# Header and Message Construction
# =============================================================================


def parse_header(raw: str) -> HarmonyHeader:
    """
    Parse the header between <|start|> and <|message|>.

    Args:
        raw: Header text.

    Returns:
        HarmonyHeader.

    Raises:
        HarmonyParseError: InvalidHeader for an empty role section,
            MissingChannelToken when no channel name is present.
    """
    trimmed = raw.strip()
    channel_index = trimmed.find(CHANNEL_TOKEN)
    role_part = trimmed if channel_index == -1 else trimmed[:channel_index]
    role_tokens = role_part.split()
    if not role_tokens:
        raise HarmonyParseError(
            HarmonyErrorCode.INVALID_HEADER, "Empty role section in message header"
        )
    if channel_index == -1:
        raise HarmonyParseError(
            HarmonyErrorCode.MISSING_CHANNEL_TOKEN, "Missing <|channel|> token"
        )

    channel_part = trimmed[channel_index + len(CHANNEL_TOKEN):]
    channel_tokens = channel_part.replace(CONSTRAIN_TOKEN, f" {CONSTRAIN_TOKEN} ").split()
    if (
        not channel_tokens
        or channel_tokens[0].startswith(ROUTING_PREFIX)
        or channel_tokens[0] == CONSTRAIN_TOKEN
    ):
        raise HarmonyParseError(
            HarmonyErrorCode.MISSING_CHANNEL_TOKEN, "Missing channel name after <|channel|>"
        )
    channel = channel_tokens[0]

    to: Optional[str] = None
    constraint: Optional[str] = None

    # Qualifiers may also trail the role, e.g. "assistant to=functions.x"
    for token in role_tokens[1:]:
        if token.startswith(ROUTING_PREFIX):
            to = token[len(ROUTING_PREFIX):] or None

    expect_constraint = False
    for token in channel_tokens[1:]:
        if expect_constraint:
            constraint = token
            expect_constraint = False
        elif token == CONSTRAIN_TOKEN:
            expect_constraint = True
        elif token.startswith(ROUTING_PREFIX):
            to = token[len(ROUTING_PREFIX):] or None
        elif constraint is None:
            # "<|channel|>commentary json" carries the content type bare
            constraint = token
        else:
            logger.debug(f"Ignoring unknown header qualifier: {token!r}")

    if role_tokens[0] == "assistant":
        return HarmonyHeader(
            role="assistant", channel=channel, to=to, constraint=constraint
        )
    return HarmonyHeader(
        role="tool", channel=channel, name=role_tokens[0], constraint=constraint
    )


def build_message(header: HarmonyHeader, content: str, stop: StopKind) -> HarmonyMessage:
    """
    Build a message from its header, raw content and terminating sentinel.

    Call arguments and tool results that fail JSON parsing degrade to their
    raw text instead of failing the transcript.
    """
    trimmed = content.strip()
    if header.role == "tool":
        result = decode_json_strict(trimmed)
        if not result.parsed:
            logger.debug(f"Tool result for {header.name} is not JSON, keeping raw text")
        return ToolMessage(
            name=header.name or "",
            channel=header.channel,
            stop=stop,
            result=result,
            constraint=header.constraint,
        )

    arguments = None
    if stop == "call":
        arguments = decode_json_strict(trimmed)
        if not arguments.parsed:
            logger.debug(f"Call arguments for {header.to} are not JSON: {arguments.error}")
    return AssistantMessage(
        channel=header.channel,
        content=trimmed,
        stop=stop,
        to=header.to,
        constraint=header.constraint,
        arguments=arguments,
    )


# =============================================================================
# Complete-buffer Parser
# =============================================================================


def parse_harmony_turn(
    text: str,
    chunk_marker: str = DEFAULT_CHUNK_MARKER,
) -> HarmonyParseResult:
    """
    Parse a fully assembled Harmony transcript.

    Parsing is all-or-nothing: the first structural error stops the parse and
    no partial message list is returned.

    Args:
        text: The complete transcript.
        chunk_marker: Transport chunk marker to strip before tokenizing.

    Returns:
        HarmonyParseResult with either messages or error set.
    """
    source = normalize_transcript(text, chunk_marker)
    messages: List[HarmonyMessage] = []
    index = 0

    def fail(code: HarmonyErrorCode, message: str) -> HarmonyParseResult:
        logger.debug(f"Harmony parse failed at offset {index}: {code.value}: {message}")
        return HarmonyParseResult(error=HarmonyParseError(code, message))

    while index < len(source):
        start_index = source.find(START_TOKEN, index)
        if start_index == -1:
            if source[index:].strip():
                return fail(HarmonyErrorCode.MISSING_START, "Unexpected trailing content")
            break

        header_start = start_index + len(START_TOKEN)
        message_index = source.find(MESSAGE_TOKEN, header_start)
        next_start = source.find(START_TOKEN, header_start)
        if message_index == -1 or (next_start != -1 and next_start < message_index):
            return fail(HarmonyErrorCode.MISSING_MESSAGE_TOKEN, "Missing <|message|> token")

        try:
            header = parse_header(source[header_start:message_index])
        except HarmonyParseError as e:
            index = header_start
            return fail(e.code, e.message)

        content_start = message_index + len(MESSAGE_TOKEN)
        sentinel = SENTINEL_PATTERN.search(source, content_start)
        next_start = source.find(START_TOKEN, content_start)
        if sentinel is None:
            return fail(
                HarmonyErrorCode.MISSING_SENTINEL, "Missing <|end|>/<|call|>/<|return|>"
            )
        if next_start != -1 and next_start < sentinel.start():
            return fail(
                HarmonyErrorCode.MISSING_SENTINEL,
                "Encountered next <|start|> before closing sentinel",
            )

        stop: StopKind = sentinel.group(1)  # type: ignore[assignment]
        messages.append(build_message(header, source[content_start:sentinel.start()], stop))
        index = sentinel.end()

    return HarmonyParseResult(messages=messages)
