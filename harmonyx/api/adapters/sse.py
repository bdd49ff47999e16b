# SPDX-License-Identifier: Apache-2.0
"""
SSE (Server-Sent Events) framing and formatting.

FrameSplitter turns an incrementally received SSE body into frames: segments
separated by a blank line, with `data:` prefixes removed and the `[DONE]`
terminator dropped. The formatters do the reverse for normalized stream
events.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import List

from pydantic import BaseModel

from ..stream_models import to_wire

logger = logging.getLogger(__name__)

DEFAULT_DATA_PREFIX = "data:"
DEFAULT_DONE_TOKEN = "[DONE]"
FRAME_SEPARATOR = "\n\n"


class FrameSplitter:
    """
    Split an SSE body into frames as it arrives.

    Never raises: text without a frame boundary simply stays buffered.
    """

    def __init__(
        self,
        data_prefix: str = DEFAULT_DATA_PREFIX,
        done_token: str = DEFAULT_DONE_TOKEN,
    ):
        self.data_prefix = data_prefix
        self.done_token = done_token
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Trailing partial frame."""
        return self._buffer

    def push(self, text: str) -> List[str]:
        """
        Append received text and return every complete frame.

        Args:
            text: Next piece of the response body.

        Returns:
            Cleaned frames in arrival order.
        """
        if not text:
            return []
        buffer = self._buffer + text
        buffer = buffer.replace("\r\n", "\n")
        # A lone CR at the end may be the first half of a CRLF
        if buffer.endswith("\r"):
            hold, buffer = "\r", buffer[:-1]
        else:
            hold = ""

        parts = buffer.split(FRAME_SEPARATOR)
        self._buffer = parts.pop() + hold

        frames = []
        for part in parts:
            frame = self._clean(part)
            if frame is not None:
                frames.append(frame)
        return frames

    def flush(self) -> List[str]:
        """Return the trailing partial frame, if any, and reset."""
        remainder, self._buffer = self._buffer, ""
        frame = self._clean(remainder.replace("\r", ""))
        return [frame] if frame is not None else []

    def _clean(self, raw: str) -> str | None:
        lines = []
        for line in raw.split("\n"):
            if line.startswith(self.data_prefix):
                lines.append(line[len(self.data_prefix):].lstrip())
            else:
                lines.append(line.strip())
        frame = "\n".join(lines).strip()
        if not frame:
            return None
        if frame == self.done_token:
            logger.debug("SSE stream terminator received")
            return None
        return frame


def split_frames(
    text: str,
    data_prefix: str = DEFAULT_DATA_PREFIX,
    done_token: str = DEFAULT_DONE_TOKEN,
) -> List[str]:
    """Split a complete SSE body into frames."""
    splitter = FrameSplitter(data_prefix, done_token)
    return splitter.push(text) + splitter.flush()


# =============================================================================
# Formatters
# =============================================================================


class SSEFormatter(ABC):
    """Abstract base class for SSE event formatting."""

    @abstractmethod
    def format_event(self, event: BaseModel) -> str:
        """
        Format a stream event.

        Args:
            event: Normalized stream event.

        Returns:
            Formatted SSE event string.
        """
        pass

    @abstractmethod
    def format_end(self) -> str:
        """Format the stream end marker."""
        pass


class StreamEventSSEFormatter(SSEFormatter):
    """
    OpenAI-style formatter: `data: {json}\\n\\n`, ended by `data: [DONE]\\n\\n`.
    """

    def format_event(self, event: BaseModel) -> str:
        return f"data: {json.dumps(to_wire(event), ensure_ascii=False)}\n\n"

    def format_end(self) -> str:
        return "data: [DONE]\n\n"


class TypedSSEFormatter(SSEFormatter):
    """
    Formatter that names each event: `event: {type}\\ndata: {json}\\n\\n`.

    The done event itself ends the stream, so there is no separate marker.
    """

    def format_event(self, event: BaseModel) -> str:
        data = to_wire(event)
        return f"event: {data['type']}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"

    def format_end(self) -> str:
        return ""
