# SPDX-License-Identifier: Apache-2.0
"""
Stream event normalization.

Turns transport frames into the normalized StreamEvent sequence. A frame may
be a JSON envelope carrying a text delta (`{"delta": ...}`, `{"message": ...}`,
OpenAI `choices[].delta.content`), a bare JSON string, or raw Harmony text.
Deltas that carry protocol tokens go through a HarmonyDecoder; plain deltas
become content events directly.

Channel routing:
- analysis -> dropped (when suppress_analysis is set)
- final    -> buffered until the end of the stream, then salvaged to a
              return event (or surfaced as content if it is not JSON)
- others   -> content events
"""

import codecs
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional, Union

from pydantic import BaseModel

from ..adapter.decoder import (
    HarmonyDecoder,
    HarmonyError,
    HarmonyEvent,
    HarmonyReturn,
    HarmonyText,
    HarmonyToolCall,
    HarmonyToolResult,
)
from ..adapter.harmony import contains_protocol_token
from ..logging_config import TRACE, SessionLoggerAdapter, new_session_id
from ..settings import DecoderSettings, GlobalSettings, TransportSettings
from ..utils.json_salvage import salvage_json
from .adapters.sse import FrameSplitter
from .stream_models import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    ReturnEvent,
    StreamEvent,
    ToolCallEvent,
)

logger = logging.getLogger(__name__)

_NOT_JSON = object()


def serialize_arguments(args: Any) -> str:
    """
    Serialize tool-call arguments to text.

    Strings pass through verbatim, None becomes "", anything else is compact
    JSON. Values that cannot be serialized (cycles, unsupported types) also
    become "".
    """
    if isinstance(args, str):
        return args
    if args is None:
        return ""
    try:
        return json.dumps(args, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError, RecursionError) as e:
        logger.debug(f"Tool arguments are not serializable: {e}")
        return ""


def _text_of(value: Any) -> Optional[str]:
    """Extract the text delta from a delta/message field value."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in ("content", "text"):
            text = value.get(key)
            if isinstance(text, str):
                return text
    return None


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


class StreamEventNormalizer:
    """
    Per-session frame-to-event normalizer.

    One instance per stream. After finish() or an error event it ignores
    further input. Tool calls are numbered in the order the session meets
    them, whether decoded from Harmony or carried by `choices[].delta`.
    """

    def __init__(
        self,
        settings: Optional[DecoderSettings] = None,
        session_id: Optional[str] = None,
    ):
        self.settings = settings or DecoderSettings()
        self._log = SessionLoggerAdapter(logger, session_id)
        self._decoder = HarmonyDecoder(
            default_channel=self.settings.default_channel,
            chunk_marker=self.settings.chunk_marker,
            assume_start=self.settings.assume_start,
        )
        self._tool_index = 0
        self._upstream_indexes: Dict[int, int] = {}
        self._final_parts: List[str] = []
        self._returned = False
        self._harmony_seen = False
        self._finished = False

    @property
    def finished(self) -> bool:
        """True once done or error has been emitted."""
        return self._finished

    @property
    def tool_calls_emitted(self) -> int:
        return self._tool_index

    def feed_frame(self, frame: str) -> List[StreamEvent]:
        """
        Normalize one transport frame.

        Args:
            frame: Frame text as produced by FrameSplitter.

        Returns:
            Events completed by this frame.
        """
        if self._finished or not frame:
            return []

        try:
            payload = json.loads(frame)
        except (json.JSONDecodeError, RecursionError):
            payload = _NOT_JSON

        events: List[StreamEvent] = []
        handled = False

        if isinstance(payload, str):
            handled = True
            events.extend(self._route_delta(payload))
        elif isinstance(payload, dict):
            delta = _text_of(payload.get("delta"))
            if delta is None:
                delta = _text_of(payload.get("message"))
            if delta is not None:
                handled = True
                events.extend(self._route_delta(delta))

            choices = payload.get("choices")
            if isinstance(choices, list):
                handled = True
                for choice in choices:
                    events.extend(self._route_choice(choice))

        if not handled:
            self._log.log(TRACE, f"Unrecognized frame, decoding as raw Harmony: {frame!r}")
            events.extend(self._push_decoder(frame))

        return self._cut_at_error(events)

    def finish(self) -> List[StreamEvent]:
        """
        Flush the decoder and close the session.

        A tool-role message yields its own return event without claiming the
        turn result, so buffered final-channel text can still produce a
        second return here.

        Returns:
            Trailing events, ending with exactly one done (or an error).
        """
        if self._finished:
            return []

        events = self._cut_at_error(self._translate_all(self._decoder.flush()))
        if self._finished:
            return events

        final_text = "".join(self._final_parts).strip()
        if not self._returned and final_text:
            outcome = salvage_json(final_text)
            if outcome.parsed:
                events.append(
                    ReturnEvent(channel=self.settings.final_channel, result=outcome.value)
                )
            else:
                self._log.info(
                    f"Final channel text is not JSON ({outcome.error}), "
                    "surfacing it as content"
                )
                events.append(ContentEvent(channel=self.settings.final_channel, text=final_text))

        events.append(DoneEvent())
        self._finished = True
        return events

    def fail(self, code: str, detail: Optional[str] = None) -> List[StreamEvent]:
        """Close the session with an error event."""
        if self._finished:
            return []
        self._finished = True
        return [ErrorEvent(code=code, detail=detail)]

    def _route_choice(self, choice: Any) -> List[StreamEvent]:
        if not isinstance(choice, dict):
            return []
        delta = choice.get("delta")
        if not isinstance(delta, dict):
            delta = choice.get("message")
        if not isinstance(delta, dict):
            return []

        events: List[StreamEvent] = []
        content = delta.get("content")
        if isinstance(content, str) and content:
            events.extend(self._route_delta(content))

        tool_calls = delta.get("tool_calls")
        if not isinstance(tool_calls, list):
            tool_calls = []
        for position, call in enumerate(tool_calls):
            if not isinstance(call, dict):
                continue
            function = call.get("function")
            if not isinstance(function, dict):
                function = {}
            events.append(
                ToolCallEvent(
                    index=self._session_index(call.get("index"), position),
                    id=_str_or_none(call.get("id")),
                    name=_str_or_none(function.get("name")),
                    arguments=serialize_arguments(function.get("arguments")),
                    is_delta=True,
                )
            )
        return events

    def _session_index(self, upstream: Any, position: int) -> int:
        # Deltas of one upstream call share an index; new calls take the next one
        if isinstance(upstream, bool) or not isinstance(upstream, int):
            upstream = position
        index = self._upstream_indexes.get(upstream)
        if index is None:
            index = self._next_tool_index()
            self._upstream_indexes[upstream] = index
        return index

    def _next_tool_index(self) -> int:
        index = self._tool_index
        self._tool_index += 1
        return index

    def _route_delta(self, text: str) -> List[StreamEvent]:
        if self._harmony_seen or contains_protocol_token(text):
            return self._push_decoder(text)
        if not text:
            return []
        return [ContentEvent(channel=self.settings.default_channel, text=text)]

    def _push_decoder(self, text: str) -> List[StreamEvent]:
        self._harmony_seen = True
        return self._translate_all(self._decoder.push(text))

    def _translate_all(self, harmony_events: List[HarmonyEvent]) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        for event in harmony_events:
            events.extend(self._translate(event))
        return events

    def _translate(self, event: HarmonyEvent) -> List[StreamEvent]:
        if isinstance(event, HarmonyText):
            if event.channel == self.settings.analysis_channel and self.settings.suppress_analysis:
                self._log.log(TRACE, f"Suppressed analysis text: {event.text!r}")
                return []
            if event.channel == self.settings.final_channel:
                self._final_parts.append(event.text)
                return []
            return [ContentEvent(channel=event.channel, text=event.text)]

        if isinstance(event, HarmonyToolCall):
            index = self._next_tool_index()
            self._log.debug(f"Tool call #{index}: {event.name}")
            return [
                ToolCallEvent(
                    index=index,
                    name=event.name,
                    arguments=serialize_arguments(event.args),
                    is_delta=False,
                )
            ]

        if isinstance(event, HarmonyReturn):
            self._returned = True
            return [ReturnEvent(channel=event.channel, name=event.name, result=event.result)]

        if isinstance(event, HarmonyToolResult):
            return [
                ReturnEvent(
                    channel=event.channel,
                    name=event.name,
                    result=event.result.value_or_raw,
                )
            ]

        if isinstance(event, HarmonyError):
            return [ErrorEvent(code=event.code.value, detail=event.message)]

        return []

    def _cut_at_error(self, events: List[StreamEvent]) -> List[StreamEvent]:
        for i, event in enumerate(events):
            if isinstance(event, ErrorEvent):
                self._finished = True
                return events[: i + 1]
        return events


async def normalize_stream(
    chunks: AsyncIterable[Union[str, bytes]],
    settings: Optional[GlobalSettings] = None,
    session_id: Optional[str] = None,
) -> AsyncIterator[StreamEvent]:
    """
    Normalize an SSE response body into stream events.

    The only suspension point is awaiting the next chunk. The caller cancels
    by ceasing iteration; no resources need releasing.

    Args:
        chunks: Response body pieces (text or UTF-8 bytes, any split).
        settings: Decoder and framing settings (defaults when None).
        session_id: Log correlation ID (generated when None). It is attached
            to each record this session logs rather than set in the
            caller's context, so interleaved sessions stay distinct.

    Yields:
        StreamEvent values; the last one is done or error.
    """
    settings = settings or GlobalSettings()
    transport: TransportSettings = settings.transport
    session_id = session_id or new_session_id()
    log = SessionLoggerAdapter(logger, session_id)

    splitter = FrameSplitter(transport.data_prefix, transport.done_token)
    normalizer = StreamEventNormalizer(settings.decoder, session_id=session_id)
    utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
    frames = 0
    log.debug(f"Decode session {session_id} started")

    try:
        async for chunk in chunks:
            text = utf8.decode(chunk) if isinstance(chunk, bytes) else chunk
            for frame in splitter.push(text):
                frames += 1
                for event in normalizer.feed_frame(frame):
                    yield event
                if normalizer.finished:
                    return

        tail = utf8.decode(b"", final=True)
        for frame in splitter.push(tail) + splitter.flush():
            frames += 1
            for event in normalizer.feed_frame(frame):
                yield event
            if normalizer.finished:
                return

        for event in normalizer.finish():
            yield event
    except Exception as e:
        log.exception(f"Decode session {session_id} failed: {e}")
        for event in normalizer.fail("internal", str(e)):
            yield event
    finally:
        log.debug(
            f"Decode session {session_id} ended after {frames} frames",
            extra={"frames": frames},
        )


async def collect_events(events: AsyncIterable[StreamEvent]) -> List[BaseModel]:
    """Drain an event stream into a list."""
    return [event async for event in events]
