# SPDX-License-Identifier: Apache-2.0
"""
Tests for the stream event normalizer.

Covers frame shapes, channel routing, end-of-stream behaviour and the async
normalize_stream entry point.
"""

import json

import pytest

from harmonyx.api.normalizer import (
    StreamEventNormalizer,
    collect_events,
    normalize_stream,
    serialize_arguments,
)
from harmonyx.api.stream_models import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    ReturnEvent,
    ToolCallEvent,
)
from harmonyx.settings import DecoderSettings, GlobalSettings

from helpers import aiter_of, sse_body, split_every


def run_frames(frames, settings=None):
    normalizer = StreamEventNormalizer(settings)
    events = []
    for frame in frames:
        events.extend(normalizer.feed_frame(frame))
    events.extend(normalizer.finish())
    return events


def delta(text):
    return json.dumps({"delta": text})


class TestSerializeArguments:
    """Tests for serialize_arguments()."""

    def test_string_verbatim(self):
        """Strings are passed through unchanged."""
        assert serialize_arguments('{"a": 1}') == '{"a": 1}'
        assert serialize_arguments("not json") == "not json"

    def test_none_is_empty(self):
        """None serializes to an empty string."""
        assert serialize_arguments(None) == ""

    def test_compact_json(self):
        """Structured values become compact JSON."""
        assert serialize_arguments({"a": [1, 2], "b": "x"}) == '{"a":[1,2],"b":"x"}'

    def test_unserializable_is_empty(self):
        """Cycles and unsupported types serialize to an empty string."""
        cyclic = {}
        cyclic["self"] = cyclic
        assert serialize_arguments(cyclic) == ""
        assert serialize_arguments({"obj": object()}) == ""


class TestFrameShapes:
    """Frames accepted by feed_frame()."""

    def test_plain_deltas_are_content(self):
        """Deltas without protocol tokens are content on the default channel."""
        events = run_frames([delta("Hello "), delta("world")])
        assert events == [
            ContentEvent(channel="commentary", text="Hello "),
            ContentEvent(channel="commentary", text="world"),
            DoneEvent(),
        ]

    def test_bare_json_string_frame(self):
        """A JSON string frame is a delta."""
        assert run_frames(['"hi"'])[0] == ContentEvent(channel="commentary", text="hi")

    def test_message_object_frame(self):
        """A message object with content is a delta."""
        events = run_frames([json.dumps({"message": {"content": "x"}})])
        assert events[0] == ContentEvent(channel="commentary", text="x")

    def test_delta_object_with_text(self):
        """A delta object with a text field is a delta."""
        events = run_frames([json.dumps({"delta": {"text": "y"}})])
        assert events[0] == ContentEvent(channel="commentary", text="y")

    def test_openai_choices(self):
        """OpenAI chunks yield content and tool-call delta events."""
        frame = json.dumps(
            {
                "choices": [
                    {
                        "delta": {
                            "content": "hi",
                            "tool_calls": [
                                {
                                    "index": 0,
                                    "id": "call_1",
                                    "function": {"name": "lookup", "arguments": '{"q":'},
                                }
                            ],
                        }
                    }
                ]
            }
        )
        events = run_frames([frame])
        assert events == [
            ContentEvent(channel="commentary", text="hi"),
            ToolCallEvent(index=0, id="call_1", name="lookup", arguments='{"q":', is_delta=True),
            DoneEvent(),
        ]

    def test_malformed_tool_call_shapes(self):
        """A null index or a non-object function still yields a tool-call delta."""
        frame = json.dumps(
            {
                "choices": [
                    {
                        "delta": {
                            "tool_calls": [
                                {"index": None, "function": {"name": "f", "arguments": "{}"}},
                                {"index": "2", "id": 7, "function": "not-an-object"},
                            ]
                        }
                    }
                ]
            }
        )
        events = run_frames([frame])
        assert events == [
            ToolCallEvent(index=0, name="f", arguments="{}", is_delta=True),
            ToolCallEvent(index=1, arguments="", is_delta=True),
            DoneEvent(),
        ]

    def test_upstream_call_deltas_share_an_index(self):
        """Argument fragments of one upstream call keep its session index."""

        def chunk(call):
            return json.dumps({"choices": [{"delta": {"tool_calls": [call]}}]})

        events = run_frames(
            [
                chunk({"index": 0, "id": "call_1", "function": {"name": "f", "arguments": '{"a":'}}),
                chunk({"index": 0, "function": {"arguments": "1}"}}),
                chunk({"index": 1, "id": "call_2", "function": {"name": "g"}}),
            ]
        )
        assert [(e.index, e.arguments) for e in events[:-1]] == [
            (0, '{"a":'),
            (0, "1}"),
            (1, ""),
        ]

    def test_raw_harmony_frame(self):
        """Frames that are not JSON are decoded as raw Harmony text."""
        events = run_frames(['<|start|>assistant<|channel|>commentary<|message|>raw<|end|>'])
        assert events == [ContentEvent(channel="commentary", text="raw"), DoneEvent()]

    def test_unknown_json_shape_falls_back_to_raw(self):
        """An unrecognized JSON frame is fed to the decoder as text."""
        events = run_frames(['{"foo":1}'])
        assert events == [ContentEvent(channel="commentary", text='{"foo":1}'), DoneEvent()]


class TestChannelRouting:
    """Routing of decoded Harmony messages."""

    def test_full_transcript(self, full_transcript):
        """Analysis is dropped, tool calls are indexed and the final returns."""
        events = run_frames([delta(c) for c in split_every(full_transcript, 9)])
        assert events == [
            ContentEvent(channel="commentary", text="rendering UI"),
            ToolCallEvent(index=0, name="functions", arguments='{"a":1}'),
            ReturnEvent(channel="commentary", name="functions.lookup", result={"rows": 3}),
            ReturnEvent(channel="final", result={"summary": "done", "batch": []}),
            DoneEvent(),
        ]

    def test_analysis_kept_when_not_suppressed(self, plan_transcript):
        """Analysis text is surfaced when suppression is off."""
        settings = DecoderSettings(suppress_analysis=False)
        events = run_frames([delta(plan_transcript)], settings)
        assert events[0] == ContentEvent(channel="analysis", text="thinking about it")

    def test_tool_call_indexes_increment(self):
        """Each decoded tool call gets the next index."""
        call = '<|start|>assistant<|channel|>commentary to=functions.f<|message|>{}<|call|>'
        normalizer = StreamEventNormalizer()
        events = normalizer.feed_frame(delta(call + call))
        assert [e.index for e in events] == [0, 1]
        assert normalizer.tool_calls_emitted == 2

    def test_over_nested_call_arguments_stay_raw(self):
        """Arguments nested past the JSON depth limit pass through as text."""
        body = "[" * 100000 + "]" * 100000
        call = "<|start|>assistant<|channel|>commentary to=f<|message|>" + body + "<|call|>"
        events = run_frames([delta(call)])
        assert events == [ToolCallEvent(index=0, name="f", arguments=body), DoneEvent()]

    def test_tool_call_indexes_shared_across_sources(self):
        """Harmony calls and choice deltas draw from one session counter."""
        call = '<|start|>assistant<|channel|>commentary to=functions.f<|message|>{}<|call|>'
        choice = json.dumps(
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"name": "g"}}]}}]}
        )
        normalizer = StreamEventNormalizer()
        events = normalizer.feed_frame(delta(call)) + normalizer.feed_frame(choice)
        assert [(e.index, e.name) for e in events] == [(0, "functions.f"), (1, "g")]
        assert normalizer.tool_calls_emitted == 2

    def test_final_end_message_salvaged_at_finish(self):
        """Final text closed by <|end|> becomes a return when it is JSON."""
        text = '<|start|>assistant<|channel|>final<|message|>Result: {"a":1,}<|end|>'
        normalizer = StreamEventNormalizer()
        assert normalizer.feed_frame(delta(text)) == []
        assert normalizer.finish() == [ReturnEvent(channel="final", result={"a": 1}), DoneEvent()]

    def test_final_prose_becomes_content(self):
        """Final text that is not JSON is surfaced as final-channel content."""
        events = run_frames([delta("<|start|>assistant<|channel|>final<|message|>all good<|end|>")])
        assert events == [ContentEvent(channel="final", text="all good"), DoneEvent()]

    def test_open_final_message_flushed(self):
        """An unterminated final message is salvaged at the end of the stream."""
        events = run_frames([delta('<|start|>assistant<|channel|>final<|message|>{"x": [1, 2]}')])
        assert events == [ReturnEvent(channel="final", result={"x": [1, 2]}), DoneEvent()]

    def test_harmony_mode_is_sticky(self):
        """After a protocol token, plain deltas also go to the decoder."""
        events = run_frames(
            [
                delta("<|start|>assistant<|channel|>commentary<|message|>"),
                delta("plain words"),
                delta("<|end|>"),
            ]
        )
        assert events == [ContentEvent(channel="commentary", text="plain words"), DoneEvent()]


class TestTermination:
    """Done and error events."""

    def test_done_exactly_once(self):
        """finish() emits done once; later calls and frames are ignored."""
        normalizer = StreamEventNormalizer()
        assert normalizer.finish() == [DoneEvent()]
        assert normalizer.finish() == []
        assert normalizer.feed_frame(delta("late")) == []
        assert normalizer.finished

    def test_error_is_terminal(self):
        """A structural error ends the session without a done event."""
        normalizer = StreamEventNormalizer()
        events = normalizer.feed_frame(delta("<|start|>assistant<|message|>x<|end|>"))
        assert events == [
            ErrorEvent(code="MissingChannelToken", detail="Missing <|channel|> token")
        ]
        assert normalizer.finished
        assert normalizer.finish() == []

    def test_events_after_error_dropped(self, full_transcript):
        """Messages completed in the same frame after an error are not emitted."""
        text = "<|start|>assistant<|channel|>analysis<|message|>x" + full_transcript
        events = run_frames([delta(text)])
        assert len(events) == 1
        assert events[0].code == "MissingSentinel"

    def test_fail(self):
        """fail() emits a single error and closes the session."""
        normalizer = StreamEventNormalizer()
        assert normalizer.fail("internal", "boom") == [ErrorEvent(code="internal", detail="boom")]
        assert normalizer.fail("internal") == []


class TestNormalizeStream:
    """Tests for the async normalize_stream()."""

    @pytest.mark.asyncio
    async def test_sse_body(self, full_transcript):
        """An SSE body produces the same events as direct frames."""
        body = sse_body(split_every(full_transcript, 9))
        events = await collect_events(normalize_stream(aiter_of([body])))
        assert events == run_frames([delta(c) for c in split_every(full_transcript, 9)])
        assert isinstance(events[-1], DoneEvent)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("size", [1, 4, 13, 100])
    async def test_chunking_invariance(self, full_transcript, size):
        """Splitting the body at arbitrary points does not change the events."""
        body = sse_body(split_every(full_transcript, 10))
        whole = await collect_events(normalize_stream(aiter_of([body])))
        chunked = await collect_events(normalize_stream(aiter_of(split_every(body, size))))
        assert chunked == whole

    @pytest.mark.asyncio
    async def test_raw_body_without_envelope(self, full_transcript):
        """A body of raw Harmony text is decoded like the enveloped form."""
        raw = await collect_events(normalize_stream(aiter_of(split_every(full_transcript, 7))))
        enveloped = await collect_events(normalize_stream(aiter_of([sse_body([full_transcript])])))
        assert raw == enveloped

    @pytest.mark.asyncio
    async def test_bytes_split_inside_utf8_sequence(self):
        """Byte chunks splitting a multi-byte character decode correctly."""
        body = 'data: {"delta": "héllo ✓"}\n\ndata: [DONE]\n\n'.encode("utf-8")
        chunks = [body[i:i + 1] for i in range(len(body))]
        events = await collect_events(normalize_stream(aiter_of(chunks)))
        assert events == [ContentEvent(channel="commentary", text="héllo ✓"), DoneEvent()]

    @pytest.mark.asyncio
    async def test_stops_after_error(self):
        """No events follow an error event."""
        body = sse_body(["<|start|>assistant<|message|>x<|end|>", "more"])
        events = await collect_events(normalize_stream(aiter_of([body])))
        assert len(events) == 1
        assert isinstance(events[0], ErrorEvent)

    @pytest.mark.asyncio
    async def test_source_exception_becomes_internal_error(self):
        """An exception from the chunk source ends the stream with an internal error."""

        async def failing():
            yield sse_body(["partial"], done=False)
            raise RuntimeError("connection reset")

        events = await collect_events(normalize_stream(failing()))
        assert events == [
            ContentEvent(channel="commentary", text="partial"),
            ErrorEvent(code="internal", detail="connection reset"),
        ]

    @pytest.mark.asyncio
    async def test_settings_applied(self):
        """Decoder and framing settings come from GlobalSettings."""
        settings = GlobalSettings()
        settings.decoder.default_channel = "notes"
        settings.transport.data_prefix = "payload:"
        body = 'payload: {"delta": "x"}\n\n'
        events = await collect_events(normalize_stream(aiter_of([body]), settings))
        assert events == [ContentEvent(channel="notes", text="x"), DoneEvent()]
