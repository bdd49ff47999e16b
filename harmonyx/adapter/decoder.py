# SPDX-License-Identifier: Apache-2.0
"""
Incremental Harmony decoder.

Consumes Harmony text chunk by chunk, using the same grammar as
parse_harmony_turn. A message is emitted once its closing sentinel has
arrived; anything undecidable stays buffered for the next push. Because
nothing is emitted from a partial message, the event sequence does not depend
on how the caller splits the input, only when events become visible.

Event routing:
- assistant <|end|>    -> HarmonyText on the message channel
- assistant <|call|>   -> HarmonyToolCall (arguments kept raw if not JSON)
- assistant <|return|> -> HarmonyReturn when the content salvages to JSON,
                          otherwise HarmonyText with stop="return"
- tool role            -> HarmonyToolResult
- grammar violation    -> HarmonyError, after which the decoder is closed
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from ..exceptions import HarmonyErrorCode, HarmonyParseError
from ..utils.json_salvage import JsonOutcome, salvage_json
from .harmony import (
    DEFAULT_CHUNK_MARKER,
    MESSAGE_TOKEN,
    START_TOKEN,
    AssistantMessage,
    HarmonyMessage,
    SENTINEL_PATTERN,
    build_message,
    normalize_transcript,
    parse_header,
)

logger = logging.getLogger(__name__)

_PRIME = f"{START_TOKEN}assistant"


@dataclass(frozen=True)
class HarmonyText:
    """Plain text on a channel."""

    channel: str
    text: str
    stop: Optional[str] = None


@dataclass(frozen=True)
class HarmonyToolCall:
    """An assistant tool invocation."""

    name: Optional[str]
    channel: str
    arguments: JsonOutcome
    constraint: Optional[str] = None

    @property
    def args(self) -> Any:
        return self.arguments.value_or_raw


@dataclass(frozen=True)
class HarmonyReturn:
    """An assistant message closed by <|return|> carrying a JSON result."""

    channel: str
    result: Any
    raw: str
    name: Optional[str] = None


@dataclass(frozen=True)
class HarmonyToolResult:
    """A tool-role message."""

    name: str
    channel: str
    result: JsonOutcome


@dataclass(frozen=True)
class HarmonyError:
    """A grammar violation; terminal for the decoder."""

    code: HarmonyErrorCode
    message: str


HarmonyEvent = Union[HarmonyText, HarmonyToolCall, HarmonyReturn, HarmonyToolResult, HarmonyError]


def message_to_events(message: HarmonyMessage) -> List[HarmonyEvent]:
    """Translate a complete message into decoder events."""
    if not isinstance(message, AssistantMessage):
        return [HarmonyToolResult(name=message.name, channel=message.channel, result=message.result)]

    if message.stop == "call":
        return [
            HarmonyToolCall(
                name=message.to,
                channel=message.channel,
                arguments=message.arguments or JsonOutcome(raw=message.content),
                constraint=message.constraint,
            )
        ]

    if message.stop == "return":
        outcome = salvage_json(message.content)
        if outcome.parsed:
            return [HarmonyReturn(channel=message.channel, result=outcome.value, raw=message.content)]

    if not message.content:
        return []
    return [HarmonyText(channel=message.channel, text=message.content, stop=message.stop)]


@dataclass
class HarmonyDecoder:
    """
    Stateful, chunk-fed Harmony decoder.

    One instance per stream. Not safe to share between concurrent sessions.

    Attributes:
        default_channel: Channel for text found outside any message.
        chunk_marker: Transport chunk marker stripped from the input.
        assume_start: Prime the buffer with "<|start|>assistant" for
            completions whose prompt already opened the assistant header.
    """

    default_channel: str = "commentary"
    chunk_marker: str = DEFAULT_CHUNK_MARKER
    assume_start: bool = False

    _buffer: str = field(init=False, default="")
    _closed: bool = field(init=False, default=False)
    _failed: bool = field(init=False, default=False)
    _primed: bool = field(init=False, default=False)

    def __post_init__(self):
        if self.assume_start:
            self._buffer = _PRIME
            self._primed = True

    @property
    def closed(self) -> bool:
        """True after flush() or a grammar error."""
        return self._closed

    @property
    def failed(self) -> bool:
        """True if decoding stopped on a grammar error."""
        return self._failed

    @property
    def pending(self) -> str:
        """Buffered, not yet decodable text."""
        return self._buffer

    def push(self, chunk: str) -> List[HarmonyEvent]:
        """
        Append a chunk and return every event it completes.

        Args:
            chunk: Next piece of Harmony text (any split point).

        Returns:
            Events determined so far, in stream order.
        """
        if self._closed:
            if chunk:
                logger.warning("HarmonyDecoder.push() called after close, ignoring chunk")
            return []
        if not chunk:
            return []

        self._buffer = normalize_transcript(self._buffer + chunk, self.chunk_marker)
        return self._drain()

    def flush(self) -> List[HarmonyEvent]:
        """
        Emit best-effort events for whatever is still buffered and close.

        An open message (start and message tokens seen, no sentinel) becomes
        a HarmonyText on its channel; stray text becomes a HarmonyText on the
        default channel.
        """
        if self._closed:
            return []
        self._closed = True
        buffer, self._buffer = self._buffer, ""

        events: List[HarmonyEvent] = []
        start = buffer.find(START_TOKEN)
        stray = buffer if start == -1 else buffer[:start]
        if stray.strip():
            events.append(HarmonyText(channel=self.default_channel, text=stray.strip()))
        if start == -1:
            return events

        header_start = start + len(START_TOKEN)
        message_index = buffer.find(MESSAGE_TOKEN, header_start)
        if message_index == -1:
            logger.debug("Discarding incomplete Harmony header at end of stream")
            return events
        try:
            header = parse_header(buffer[header_start:message_index])
        except HarmonyParseError as e:
            logger.debug(f"Discarding unterminated message with bad header: {e.message}")
            return events

        content = buffer[message_index + len(MESSAGE_TOKEN):].strip()
        if content:
            logger.debug(f"Flushing unterminated message on channel {header.channel}")
            events.append(HarmonyText(channel=header.channel, text=content))
        return events

    def _fail(self, code: HarmonyErrorCode, message: str) -> HarmonyError:
        logger.warning(f"Harmony stream violated grammar: {code.value}: {message}")
        self._closed = True
        self._failed = True
        self._buffer = ""
        return HarmonyError(code=code, message=message)

    def _resolve_prime(self, buffer: str) -> Optional[str]:
        """
        Drop the primed header if the model opened its own message.

        Returns the buffer to decode, or None while the first bytes could
        still turn out to be a <|start|> token.
        """
        rest = buffer[len(_PRIME):].lstrip()
        if rest.startswith(START_TOKEN):
            self._primed = False
            return rest
        if START_TOKEN.startswith(rest):
            return None
        self._primed = False
        return buffer

    def _drain(self) -> List[HarmonyEvent]:
        events: List[HarmonyEvent] = []
        buffer = self._buffer

        if self._primed:
            resolved = self._resolve_prime(buffer)
            if resolved is None:
                return events
            buffer = resolved

        while True:
            start = buffer.find(START_TOKEN)
            if start == -1:
                break
            if start > 0:
                stray = buffer[:start].strip()
                if stray:
                    events.append(HarmonyText(channel=self.default_channel, text=stray))
                buffer = buffer[start:]

            header_start = len(START_TOKEN)
            message_index = buffer.find(MESSAGE_TOKEN, header_start)
            next_start = buffer.find(START_TOKEN, header_start)
            if next_start != -1 and (message_index == -1 or next_start < message_index):
                events.append(
                    self._fail(HarmonyErrorCode.MISSING_MESSAGE_TOKEN, "Missing <|message|> token")
                )
                return events
            if message_index == -1:
                break

            try:
                header = parse_header(buffer[header_start:message_index])
            except HarmonyParseError as e:
                events.append(self._fail(e.code, e.message))
                return events

            content_start = message_index + len(MESSAGE_TOKEN)
            sentinel = SENTINEL_PATTERN.search(buffer, content_start)
            next_start = buffer.find(START_TOKEN, content_start)
            if next_start != -1 and (sentinel is None or next_start < sentinel.start()):
                events.append(
                    self._fail(
                        HarmonyErrorCode.MISSING_SENTINEL,
                        "Encountered next <|start|> before closing sentinel",
                    )
                )
                return events
            if sentinel is None:
                break

            message = build_message(header, buffer[content_start:sentinel.start()], sentinel.group(1))
            events.extend(message_to_events(message))
            buffer = buffer[sentinel.end():]

        self._buffer = buffer
        return events
