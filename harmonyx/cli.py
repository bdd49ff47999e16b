#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0
"""
CLI for harmonyx.

Commands:
    harmonyx parse FILE          Parse a complete Harmony transcript
    harmonyx plan FILE           Extract the plan text from a planner response
    harmonyx batch FILE          Extract the batch text from an actor response
    harmonyx salvage FILE        Recover a JSON value from model output
    harmonyx replay FILE         Replay a captured SSE body through the normalizer
    harmonyx chat PROMPT         Stream a live request from a gpt-oss endpoint

Usage:
    # Validate a finished transcript
    harmonyx plan transcript.txt

    # Replay a capture in 7-character chunks and print SSE
    harmonyx replay capture.sse --chunk-size 7 --sse

FILE may be "-" to read from stdin.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, AsyncIterator, List, Optional


def _read_input(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _init(args):
    """Load settings and configure logging for a command."""
    from .logging_config import configure_file_logging, configure_logging
    from .settings import init_settings

    settings = init_settings(base_path=args.base_path, cli_args=args)
    configure_logging(
        level=settings.logging.level,
        format_style=settings.logging.format,
    )
    if settings.logging.log_dir:
        configure_file_logging(
            log_dir=settings.logging.get_log_dir(settings.base_path),
            level=settings.logging.level,
            retention_days=settings.logging.retention_days,
        )

    errors = settings.validate()
    if errors:
        for error in errors:
            print(f"Configuration error: {error}", file=sys.stderr)
        sys.exit(2)
    return settings


def parse_command(args) -> int:
    """Batch-parse a transcript and print its messages."""
    from .adapter.harmony import parse_harmony_turn

    settings = _init(args)
    result = parse_harmony_turn(_read_input(args.file), settings.decoder.chunk_marker)
    _print_json(result.to_dict())
    return 0 if result.ok else 1


def final_command(args) -> int:
    """Print the final-channel text of a plan or batch response."""
    from .adapter.plan import decode_batch, decode_plan
    from .logging_config import SessionLogContext

    settings = _init(args)
    decode = decode_plan if args.command == "plan" else decode_batch
    with SessionLogContext():
        result = decode(
            _read_input(args.file),
            final_channel=settings.decoder.final_channel,
            chunk_marker=settings.decoder.chunk_marker,
        )
    if not result.ok:
        _print_json(result.to_dict())
        return 1
    print(result.plan_text if args.command == "plan" else result.batch_text)
    return 0


def salvage_command(args) -> int:
    """Print the JSON value recovered from model output."""
    from .exceptions import JsonSalvageError
    from .utils.json_salvage import parse_loose

    _init(args)
    try:
        value = parse_loose(_read_input(args.file))
    except JsonSalvageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    _print_json(value)
    return 0


async def _chunked(text: str, size: int) -> AsyncIterator[str]:
    if size <= 0:
        yield text
        return
    for offset in range(0, len(text), size):
        yield text[offset:offset + size]


async def _emit_events(events: AsyncIterator[Any], sse: bool) -> int:
    from .api.adapters.sse import StreamEventSSEFormatter
    from .api.stream_models import ErrorEvent, to_wire

    formatter = StreamEventSSEFormatter()
    failed = False
    async for event in events:
        if isinstance(event, ErrorEvent):
            failed = True
        if sse:
            sys.stdout.write(formatter.format_event(event))
        else:
            print(json.dumps(to_wire(event), ensure_ascii=False))
    if sse:
        sys.stdout.write(formatter.format_end())
    sys.stdout.flush()
    return 1 if failed else 0


def replay_command(args) -> int:
    """Replay a captured SSE body through the stream normalizer."""
    from .api.normalizer import normalize_stream

    settings = _init(args)
    body = _read_input(args.file)
    events = normalize_stream(_chunked(body, args.chunk_size), settings)
    return asyncio.run(_emit_events(events, args.sse))


def chat_command(args) -> int:
    """Send a prompt to a live endpoint and print the normalized events."""
    from .api.adapters.oss_harmony import OssHarmonyAdapter
    from .exceptions import ConfigurationError

    settings = _init(args)
    messages: List[dict] = []
    if args.system:
        messages.append({"role": "system", "content": args.system})
    messages.append({"role": "user", "content": args.prompt})

    async def run() -> int:
        async with OssHarmonyAdapter.from_settings(settings) as adapter:
            return await _emit_events(adapter.chat(messages), args.sse)

    try:
        return asyncio.run(run())
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["trace", "debug", "info", "warning", "error"],
        default=None,
        help="Log level (default: info). trace includes raw model text",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        choices=["standard", "json"],
        default=None,
        help="Log output format (default: standard)",
    )
    parser.add_argument(
        "--base-path",
        type=str,
        default=None,
        help="Base directory for harmonyx settings (default: ~/.harmonyx)",
    )
    parser.add_argument(
        "--final-channel",
        type=str,
        default=None,
        help="Channel carrying the final result (default: final)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="harmonyx",
        description="harmonyx: Harmony stream decoder and JSON salvage tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  harmonyx plan response.txt
  harmonyx replay capture.sse --chunk-size 5
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    parse_parser = subparsers.add_parser("parse", help="Parse a complete Harmony transcript")
    parse_parser.add_argument("file", help="Transcript file, or - for stdin")
    _add_common_arguments(parse_parser)

    for name, help_text in (
        ("plan", "Extract the plan text from a planner response"),
        ("batch", "Extract the batch text from an actor response"),
    ):
        final_parser = subparsers.add_parser(name, help=help_text)
        final_parser.add_argument("file", help="Response file, or - for stdin")
        _add_common_arguments(final_parser)

    salvage_parser = subparsers.add_parser("salvage", help="Recover a JSON value from model output")
    salvage_parser.add_argument("file", help="Input file, or - for stdin")
    _add_common_arguments(salvage_parser)

    replay_parser = subparsers.add_parser(
        "replay", help="Replay a captured SSE body through the normalizer"
    )
    replay_parser.add_argument("file", help="Captured SSE body, or - for stdin")
    replay_parser.add_argument(
        "--chunk-size",
        type=int,
        default=0,
        help="Feed the body in chunks of N characters (default: whole body)",
    )
    replay_parser.add_argument("--sse", action="store_true", help="Print events as SSE")
    replay_parser.add_argument(
        "--assume-start",
        action="store_true",
        default=None,
        help="The capture starts after an already opened <|start|>assistant header",
    )
    _add_common_arguments(replay_parser)

    chat_parser = subparsers.add_parser("chat", help="Stream a live request from a gpt-oss endpoint")
    chat_parser.add_argument("prompt", help="User prompt")
    chat_parser.add_argument("--system", type=str, default=None, help="System prompt")
    chat_parser.add_argument("--endpoint", type=str, default=None, help="Chat completions URL")
    chat_parser.add_argument("--model", type=str, default=None, help="Model name")
    chat_parser.add_argument("--api-key", type=str, default=None, help="Bearer token (optional)")
    chat_parser.add_argument(
        "--timeout", type=float, default=None, help="Request timeout in seconds (default: 120)"
    )
    chat_parser.add_argument("--sse", action="store_true", help="Print events as SSE")
    _add_common_arguments(chat_parser)

    return parser


_COMMANDS = {
    "parse": parse_command,
    "plan": final_command,
    "batch": final_command,
    "salvage": salvage_command,
    "replay": replay_command,
    "chat": chat_command,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
