# SPDX-License-Identifier: Apache-2.0
"""
Tests for HarmonyDecoder.

The central property is chunk-invariance: any partition of the input must
produce the same event sequence as a single push.
"""

import random

import pytest

from harmonyx.adapter.decoder import (
    HarmonyDecoder,
    HarmonyError,
    HarmonyReturn,
    HarmonyText,
    HarmonyToolCall,
    HarmonyToolResult,
)
from harmonyx.exceptions import HarmonyErrorCode

from helpers import ANALYSIS, COMMENTARY, FINAL_RETURN, TOOL_CALL, TOOL_RESULT, split_every


def decode_all(chunks, **kwargs):
    decoder = HarmonyDecoder(**kwargs)
    events = []
    for chunk in chunks:
        events.extend(decoder.push(chunk))
    events.extend(decoder.flush())
    return events


class TestHarmonyDecoderEvents:
    """Event routing for complete messages."""

    def test_full_transcript(self, full_transcript):
        """Each message kind maps to its event type in order."""
        events = decode_all([full_transcript])
        assert [type(e) for e in events] == [
            HarmonyText,
            HarmonyText,
            HarmonyToolCall,
            HarmonyToolResult,
            HarmonyReturn,
        ]
        analysis, commentary, call, result, final = events
        assert analysis == HarmonyText(channel="analysis", text="thinking about it", stop="end")
        assert commentary.channel == "commentary"
        assert call.name == "functions"
        assert call.args == {"a": 1}
        assert result.name == "functions.lookup"
        assert result.result.value == {"rows": 3}
        assert final.channel == "final"
        assert final.result == {"summary": "done", "batch": []}

    def test_non_json_return_is_text(self):
        """A return whose content is not JSON becomes text with stop=return."""
        events = decode_all(["<|start|>assistant<|channel|>final<|message|>all done<|return|>"])
        assert events == [HarmonyText(channel="final", text="all done", stop="return")]

    def test_call_with_bad_arguments_keeps_raw(self):
        """Unparseable call arguments are passed through as raw text."""
        events = decode_all(
            ["<|start|>assistant<|channel|>commentary to=functions.x<|message|>{bad<|call|>"]
        )
        assert len(events) == 1
        assert events[0].args == "{bad"
        assert events[0].arguments.parsed is False

    def test_empty_message_emits_nothing(self):
        """A message with empty content produces no event."""
        assert decode_all(["<|start|>assistant<|channel|>commentary<|message|>  <|end|>"]) == []

    def test_events_wait_for_sentinel(self):
        """Nothing is emitted until the sentinel arrives."""
        decoder = HarmonyDecoder()
        assert decoder.push("<|start|>assistant<|channel|>commentary<|message|>hel") == []
        assert decoder.push("lo") == []
        assert decoder.push("<|end|>") == [HarmonyText(channel="commentary", text="hello", stop="end")]
        assert decoder.pending == ""

    def test_stray_text_on_default_channel(self):
        """Text before a start token is emitted on the default channel."""
        events = decode_all(["preamble " + COMMENTARY], default_channel="notes")
        assert events[0] == HarmonyText(channel="notes", text="preamble")
        assert events[1].channel == "commentary"


class TestHarmonyDecoderFlush:
    """flush() behaviour at end of stream."""

    def test_open_message_flushed_as_text(self):
        """An unterminated message becomes best-effort text."""
        decoder = HarmonyDecoder()
        decoder.push("<|start|>assistant<|channel|>final<|message|>{\"partial\": ")
        events = decoder.flush()
        assert events == [HarmonyText(channel="final", text='{"partial":')]
        assert decoder.closed

    def test_stray_tail_flushed(self):
        """Trailing text outside any message is flushed on the default channel."""
        decoder = HarmonyDecoder()
        decoder.push(COMMENTARY + " tail")
        assert decoder.flush() == [HarmonyText(channel="commentary", text="tail")]

    def test_incomplete_header_discarded(self):
        """A header without a message token is dropped at flush."""
        decoder = HarmonyDecoder()
        decoder.push("<|start|>assistant<|chan")
        assert decoder.flush() == []

    def test_push_after_flush_ignored(self):
        """A closed decoder ignores further input."""
        decoder = HarmonyDecoder()
        decoder.flush()
        assert decoder.push(COMMENTARY) == []
        assert decoder.flush() == []


class TestHarmonyDecoderErrors:
    """Structural errors are terminal."""

    def test_missing_sentinel(self):
        """A new start token inside content is MissingSentinel."""
        decoder = HarmonyDecoder()
        events = decoder.push("<|start|>assistant<|channel|>analysis<|message|>x" + FINAL_RETURN)
        assert events == [
            HarmonyError(
                code=HarmonyErrorCode.MISSING_SENTINEL,
                message="Encountered next <|start|> before closing sentinel",
            )
        ]
        assert decoder.failed and decoder.closed
        assert decoder.push(COMMENTARY) == []

    def test_missing_message_token(self):
        """A second start token inside a header is MissingMessageToken."""
        events = decode_all(["<|start|>assistant<|channel|>final" + COMMENTARY])
        assert len(events) == 1
        assert events[0].code == HarmonyErrorCode.MISSING_MESSAGE_TOKEN

    def test_bad_header(self):
        """Header errors carry the parser's code."""
        events = decode_all([ANALYSIS + "<|start|><|channel|>final<|message|>{}<|return|>"])
        assert events[0].channel == "analysis"
        assert events[1].code == HarmonyErrorCode.INVALID_HEADER
        assert len(events) == 2


class TestHarmonyDecoderAssumeStart:
    """Decoding completions whose prompt already opened the header."""

    def test_primed_header(self):
        """Output starting at <|channel|> decodes with assume_start."""
        events = decode_all(
            ['<|channel|>final<|message|>{"ok":true}<|return|>'], assume_start=True
        )
        assert events == [HarmonyReturn(channel="final", result={"ok": True}, raw='{"ok":true}')]

    def test_primed_header_dropped_when_model_opens_message(self):
        """A full message from the model replaces the primed header."""
        events = decode_all([FINAL_RETURN], assume_start=True)
        assert len(events) == 1
        assert isinstance(events[0], HarmonyReturn)

    def test_primed_header_split_start_token(self):
        """A start token split over pushes is still recognised after priming."""
        chunks = split_every(FINAL_RETURN, 3)
        assert decode_all(chunks, assume_start=True) == decode_all([FINAL_RETURN])


class TestChunkInvariance:
    """Any partition of the input yields the same events."""

    TRANSCRIPTS = [
        ANALYSIS + COMMENTARY + TOOL_CALL + TOOL_RESULT + FINAL_RETURN,
        "lead in " + COMMENTARY + " between " + FINAL_RETURN + " tail",
        "<| start|>assistant<|channel|>final<<<CHUNK>>><|message|>{\"a\":1}<|re turn|>",
        COMMENTARY + "<|start|>assistant<|channel|>final<|message|>{\"open\": ",
        ANALYSIS + "<|start|>assistant<|channel|>analysis<|message|>x" + FINAL_RETURN,
    ]

    @pytest.mark.parametrize("transcript", TRANSCRIPTS)
    def test_every_two_way_split(self, transcript):
        """Splitting at any single position matches the single push."""
        expected = decode_all([transcript])
        for cut in range(len(transcript) + 1):
            assert decode_all([transcript[:cut], transcript[cut:]]) == expected, cut

    @pytest.mark.parametrize("transcript", TRANSCRIPTS)
    @pytest.mark.parametrize("size", [1, 2, 5, 11])
    def test_fixed_size_chunks(self, transcript, size):
        """Fixed-size chunking matches the single push."""
        assert decode_all(split_every(transcript, size)) == decode_all([transcript])

    @pytest.mark.parametrize("seed", range(20))
    def test_random_partitions(self, seed):
        """Random partitions match the single push."""
        rng = random.Random(seed)
        transcript = self.TRANSCRIPTS[seed % len(self.TRANSCRIPTS)]
        cuts = sorted(rng.sample(range(1, len(transcript)), k=min(8, len(transcript) - 1)))
        chunks = [transcript[i:j] for i, j in zip([0] + cuts, cuts + [len(transcript)])]
        assert decode_all(chunks) == decode_all([transcript])

    def test_interleaved_decoders_are_independent(self):
        """Two sessions fed alternately do not share state."""
        first, second = HarmonyDecoder(), HarmonyDecoder()
        a = split_every(TOOL_CALL + FINAL_RETURN, 4)
        b = split_every(COMMENTARY, 3)
        events_a, events_b = [], []
        for i in range(max(len(a), len(b))):
            if i < len(a):
                events_a.extend(first.push(a[i]))
            if i < len(b):
                events_b.extend(second.push(b[i]))
        assert events_a == decode_all([TOOL_CALL + FINAL_RETURN])[:2]
        assert events_b == decode_all([COMMENTARY])
