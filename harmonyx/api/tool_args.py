# SPDX-License-Identifier: Apache-2.0
"""
Tool-call argument collection from normalized event streams.

Tool calls arrive either complete or as argument deltas spread over several
events. Both are accumulated per tool index until the stream ends, then the
accumulated text is parsed.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, Dict, List, Optional

from ..exceptions import (
    JsonSalvageError,
    ToolArgsParseError,
    ToolCollectionError,
    ToolCollectionTimeoutError,
)
from ..utils.json_salvage import parse_loose
from .normalizer import serialize_arguments
from .stream_models import DoneEvent, ErrorEvent, StreamEvent, ToolCallEvent

logger = logging.getLogger(__name__)


@dataclass
class CollectedToolCall:
    """A tool call with parsed arguments."""

    index: int
    args: Any
    id: Optional[str] = None
    name: Optional[str] = None


@dataclass
class _Accumulator:
    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    buffer: str = ""

    def update(self, event: ToolCallEvent) -> None:
        if event.id:
            self.id = event.id
        if event.name:
            self.name = event.name


async def _accumulate(
    stream: AsyncIterable[StreamEvent],
    accumulators: Dict[int, _Accumulator],
    target_name: Optional[str] = None,
) -> Optional[CollectedToolCall]:
    """
    Consume the stream into accumulators.

    Returns early with a CollectedToolCall when a complete non-text payload
    for target_name arrives.
    """
    async for event in stream:
        if isinstance(event, DoneEvent):
            break
        if isinstance(event, ErrorEvent):
            raise ToolCollectionError(
                f"Stream failed with {event.code}: {event.detail or 'no detail'}",
                tool_name=target_name,
            )
        if not isinstance(event, ToolCallEvent):
            continue

        acc = accumulators.get(event.index)
        if acc is None:
            acc = accumulators[event.index] = _Accumulator(index=event.index)
        acc.update(event)

        args = event.arguments
        if isinstance(args, str):
            acc.buffer += args
        elif args is not None:
            if target_name is not None and acc.name == target_name:
                return CollectedToolCall(index=acc.index, args=args, id=acc.id, name=acc.name)
            acc.buffer = serialize_arguments(args)
    return None


async def collect_tool_args(
    stream: AsyncIterable[StreamEvent],
    target_name: str,
    timeout: float,
) -> Optional[CollectedToolCall]:
    """
    Collect the arguments of the first call to a named tool.

    Args:
        stream: Normalized event stream.
        target_name: Tool name to collect (e.g. "emit_plan").
        timeout: Seconds to wait for the stream to finish.

    Returns:
        The collected call, or None if the tool was never called.

    Raises:
        ToolCollectionTimeoutError: The stream did not finish in time.
        ToolArgsParseError: The tool's arguments are not JSON.
        ToolCollectionError: The stream failed.
    """
    accumulators: Dict[int, _Accumulator] = {}
    try:
        early = await asyncio.wait_for(
            _accumulate(stream, accumulators, target_name), timeout=timeout
        )
    except asyncio.TimeoutError as e:
        raise ToolCollectionTimeoutError(
            f"Tool collection timeout after {timeout}s",
            timeout=timeout,
            tool_name=target_name,
        ) from e
    except ToolCollectionError:
        raise
    except Exception as e:
        raise ToolCollectionError("Tool collection failed", tool_name=target_name) from e

    if early is not None:
        return early

    for acc in accumulators.values():
        if acc.name != target_name or not acc.buffer:
            continue
        try:
            args = parse_loose(acc.buffer)
        except JsonSalvageError as e:
            raise ToolArgsParseError(
                f"Failed to parse tool args for {target_name}",
                tool_name=target_name,
                details={"index": acc.index},
            ) from e
        return CollectedToolCall(index=acc.index, args=args, id=acc.id, name=acc.name)

    logger.debug(f"No call to {target_name} in stream")
    return None


async def collect_all_tool_calls(
    stream: AsyncIterable[StreamEvent],
    timeout: float,
) -> List[CollectedToolCall]:
    """
    Collect every tool call in a stream, regardless of name.

    Calls whose arguments cannot be parsed are logged and skipped.

    Raises:
        ToolCollectionTimeoutError: The stream did not finish in time.
        ToolCollectionError: The stream failed.
    """
    accumulators: Dict[int, _Accumulator] = {}
    try:
        await asyncio.wait_for(_accumulate(stream, accumulators), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise ToolCollectionTimeoutError(
            f"Tool collection timeout after {timeout}s", timeout=timeout
        ) from e
    except ToolCollectionError:
        raise
    except Exception as e:
        raise ToolCollectionError("Tool collection failed") from e

    results: List[CollectedToolCall] = []
    for acc in accumulators.values():
        if not acc.buffer:
            continue
        try:
            args = parse_loose(acc.buffer)
        except JsonSalvageError as e:
            logger.error(f"Failed to parse tool call index {acc.index}: {e}")
            continue
        results.append(CollectedToolCall(index=acc.index, args=args, id=acc.id, name=acc.name))
    return results
