# SPDX-License-Identifier: Apache-2.0
"""Transcripts and stream helpers shared by the tests."""

import json
from typing import AsyncIterator, Iterable, List

TOOL_CALL = (
    '<|start|>assistant<|channel|>commentary to=functions<|message|>{"a":1}<|call|>'
)
FINAL_RETURN = (
    '<|start|>assistant<|channel|>final<|message|>{"summary":"done","batch":[]}<|return|>'
)
ANALYSIS = "<|start|>assistant<|channel|>analysis<|message|>thinking about it<|end|>"
COMMENTARY = "<|start|>assistant<|channel|>commentary<|message|>rendering UI<|end|>"
TOOL_RESULT = (
    '<|start|>functions.lookup<|channel|>commentary<|message|>{"rows":3}<|end|>'
)


def sse_body(deltas: Iterable[str], done: bool = True) -> str:
    """Wrap text deltas as `data: {"delta": ...}` SSE frames."""
    body = "".join(f"data: {json.dumps({'delta': d})}\n\n" for d in deltas)
    if done:
        body += "data: [DONE]\n\n"
    return body


def split_every(text: str, size: int) -> List[str]:
    """Split text into fixed-size chunks."""
    return [text[i:i + size] for i in range(0, len(text), size)]


async def aiter_of(items: Iterable) -> AsyncIterator:
    """Turn a plain iterable into an async iterator."""
    for item in items:
        yield item
