# SPDX-License-Identifier: Apache-2.0
"""
Transport adapters.

SSE framing and formatting live here; the live endpoint client is imported
from harmonyx.api.adapters.oss_harmony directly since it depends on the
normalizer.
"""

from .sse import FrameSplitter, SSEFormatter, StreamEventSSEFormatter, TypedSSEFormatter

__all__ = [
    "FrameSplitter",
    "SSEFormatter",
    "StreamEventSSEFormatter",
    "TypedSSEFormatter",
]
