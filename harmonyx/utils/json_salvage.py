# SPDX-License-Identifier: Apache-2.0
"""
JSON salvage for imperfect model output.

Models wrap JSON in prose, role labels, code fences and occasionally
double-encode it or leave trailing commas behind. This module recovers the
single most plausible JSON value from such text. The behaviour is
deterministic: when nothing parses we raise instead of guessing.

- normalize: strip BOMs, zero-width characters, leading labels and fences
- parse_loose: direct parse, balanced-slice parse, quoted-string parse
- salvage_json: non-raising wrapper returning a JsonOutcome
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from ..exceptions import JsonSalvageError

logger = logging.getLogger(__name__)

# Leading "json:" / "assistant -" style labels, possibly repeated
_LEADING_LABEL = re.compile(
    r"^\s*(?:json|assistant|commentary|analysis|final|output)(?![\w])\s*:?[\t -]*\n?",
    re.IGNORECASE,
)
_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*(?=[}\]])")

# BOM plus zero-width space/non-joiner/joiner and word joiner
_INVISIBLE_CHARS = ("\ufeff", "\u200b", "\u200c", "\u200d", "\u2060")

_OPEN_TO_CLOSE = {"{": "}", "[": "]"}
_QUOTES = ('"', "'")


@dataclass(frozen=True)
class JsonOutcome:
    """
    Result of a best-effort JSON decode.

    Either ``parsed`` is True and ``value`` holds the decoded value, or
    ``parsed`` is False and callers fall back to ``raw``.
    """

    raw: str
    value: Any = None
    parsed: bool = False
    error: Optional[str] = None

    @property
    def value_or_raw(self) -> Any:
        """The parsed value when available, otherwise the raw text."""
        return self.value if self.parsed else self.raw


def normalize(text: str) -> str:
    """
    Strip common model artefacts around a JSON payload.

    Args:
        text: Raw model output.

    Returns:
        Trimmed text without BOMs, zero-width characters, leading role or
        channel labels and code-fence markers.
    """
    if not text:
        return ""
    out = str(text)
    for ch in _INVISIBLE_CHARS:
        out = out.replace(ch, "")

    while True:
        stripped = _LEADING_LABEL.sub("", out, count=1)
        if stripped == out:
            break
        out = stripped

    out = _CODE_FENCE.sub("", out)
    return out.strip()


def _try_parse(candidate: str) -> Any:
    parsed = json.loads(candidate)
    if isinstance(parsed, str):
        # Double-encoded payload
        return json.loads(parsed)
    return parsed


def find_balanced_json_slice(text: str) -> Optional[str]:
    """
    Find the first balanced ``{...}`` or ``[...]`` slice in text.

    Each opening bracket is tried as a candidate start. Brackets inside string
    literals are ignored; a backslash escapes the following character. A
    closing bracket that does not match the innermost opener abandons the
    candidate and scanning resumes at the next opener.

    Args:
        text: Text to scan.

    Returns:
        The first balanced slice, or None.
    """
    length = len(text)
    for start in range(length):
        if text[start] not in _OPEN_TO_CLOSE:
            continue
        stack: List[str] = []
        in_string = False
        escape = False
        for i in range(start, length):
            ch = text[i]
            if escape:
                escape = False
                continue
            if ch == "\\":
                escape = True
                continue
            if ch == '"':
                in_string = not in_string
                continue
            if in_string:
                continue
            if ch in _OPEN_TO_CLOSE:
                stack.append(ch)
                continue
            if ch in ("}", "]"):
                if not stack or _OPEN_TO_CLOSE[stack.pop()] != ch:
                    break
                if not stack:
                    return text[start : i + 1]
    return None


def repair_trailing_commas(candidate: str) -> str:
    """Remove trailing commas before a closing bracket, e.g. ``{"a":1,}``."""
    return _TRAILING_COMMA.sub("", candidate)


def _quoted_attempt(quoted: str) -> Callable[[], Any]:
    if quoted[0] == '"':
        return lambda: _try_parse(quoted)
    # Single-quoted: re-quote the body as a JSON string literal
    body = quoted[1:-1].replace("\\'", "'")
    requoted = '"' + body.replace('"', '\\"') + '"'
    return lambda: _try_parse(requoted)


def parse_loose(text: str) -> Any:
    """
    Extract the most plausible single JSON value from text.

    Attempts, in order: a direct parse of the normalized text (re-parsing a
    string result), the first balanced JSON slice and its trailing-comma
    repair, and finally the whole text as a quoted JSON string.

    Args:
        text: Raw model output.

    Returns:
        The decoded JSON value.

    Raises:
        JsonSalvageError: If every attempt failed.
    """
    normalized = normalize(text)
    if not normalized:
        raise JsonSalvageError("Empty JSON buffer")

    attempts: List[Callable[[], Any]] = [lambda: _try_parse(normalized)]

    sliced = find_balanced_json_slice(normalized)
    if sliced is not None:
        attempts.append(lambda: _try_parse(sliced))
        attempts.append(lambda: _try_parse(repair_trailing_commas(sliced)))

    if (
        len(normalized) >= 2
        and normalized[0] in _QUOTES
        and normalized[-1] == normalized[0]
    ):
        attempts.append(_quoted_attempt(normalized))

    last_error: Optional[Exception] = None
    for attempt in attempts:
        try:
            return attempt()
        except (json.JSONDecodeError, TypeError, ValueError, RecursionError) as e:
            last_error = e

    if last_error is not None:
        raise JsonSalvageError(
            f"Failed to salvage JSON: {last_error}",
            details={"preview": normalized[:80]},
        ) from last_error
    raise JsonSalvageError("No JSON payload found in stream")


def salvage_json(text: str) -> JsonOutcome:
    """
    Non-raising parse_loose.

    Args:
        text: Raw model output.

    Returns:
        JsonOutcome with ``parsed`` set on success, or the error message.
    """
    try:
        return JsonOutcome(raw=text, value=parse_loose(text), parsed=True)
    except JsonSalvageError as e:
        logger.debug(f"JSON salvage failed: {e.message}")
        return JsonOutcome(raw=text, error=e.message)


def decode_json_strict(text: str) -> JsonOutcome:
    """
    Strict json.loads wrapped in a JsonOutcome.

    Used where the grammar expects a JSON body (tool-call arguments, tool
    results) and a failure should only degrade to the raw text. Input nested
    too deeply for the decoder degrades the same way.
    """
    try:
        return JsonOutcome(raw=text, value=json.loads(text), parsed=True)
    except (json.JSONDecodeError, RecursionError) as e:
        return JsonOutcome(raw=text, error=str(e))
