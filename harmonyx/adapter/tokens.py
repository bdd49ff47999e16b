# SPDX-License-Identifier: Apache-2.0
"""
Token-level feeding for locally sampled gpt-oss output.

Local inference loops produce token IDs rather than text. HarmonyTokenFeeder
decodes them with the official openai-harmony encoding and pushes the text
into a HarmonyDecoder, so local and remote streams share one event model.

A multi-byte character can be split across tokens; decoding such a prefix
yields U+FFFD, so those tokens are held until the character completes.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from openai_harmony import HarmonyEncoding, load_harmony_encoding

from .decoder import HarmonyDecoder, HarmonyEvent
from .harmony import DEFAULT_CHUNK_MARKER

logger = logging.getLogger(__name__)

HARMONY_ENCODING_NAME = "HarmonyGptOss"

_REPLACEMENT_CHAR = "\ufffd"

# Longest run of tokens held back waiting for a character to complete
_MAX_PENDING_TOKENS = 8


@dataclass
class HarmonyTokenFeeder:
    """
    Feed Harmony token IDs into an incremental decoder.

    Attributes:
        encoding: A loaded HarmonyEncoding; loaded on first use when None.
        assume_start: The prompt already ended with "<|start|>assistant", so
            the first sampled token is <|channel|>.
        default_channel: Channel for stray text outside messages.
    """

    encoding: Optional[HarmonyEncoding] = None
    assume_start: bool = True
    default_channel: str = "commentary"

    _decoder: HarmonyDecoder = field(init=False, repr=False)
    _pending: List[int] = field(init=False, default_factory=list)
    _stop_tokens: set[int] = field(init=False, default_factory=set)

    def __post_init__(self):
        if self.encoding is None:
            self.encoding = load_harmony_encoding(HARMONY_ENCODING_NAME)
        self._stop_tokens = set(self.encoding.stop_tokens_for_assistant_actions())
        self._decoder = self._new_decoder()
        logger.debug(
            f"Harmony token feeder initialized: {len(self._stop_tokens)} stop tokens, "
            f"assume_start={self.assume_start}"
        )

    def _new_decoder(self) -> HarmonyDecoder:
        return HarmonyDecoder(
            default_channel=self.default_channel,
            chunk_marker=DEFAULT_CHUNK_MARKER,
            assume_start=self.assume_start,
        )

    @property
    def decoder(self) -> HarmonyDecoder:
        return self._decoder

    def stop_token_ids(self) -> set[int]:
        """Token IDs that end an assistant action (<|call|>, <|return|>)."""
        return set(self._stop_tokens)

    def encode(self, text: str) -> List[int]:
        """Encode text, allowing Harmony special tokens."""
        return list(self.encoding.encode(text, allowed_special="all"))

    def feed(self, token_ids: Iterable[int]) -> List[HarmonyEvent]:
        """
        Decode token IDs and push the resulting text.

        Args:
            token_ids: Newly sampled token IDs.

        Returns:
            Decoder events completed by these tokens.
        """
        self._pending.extend(token_ids)
        if not self._pending:
            return []

        text = self.encoding.decode(self._pending)
        if text.endswith(_REPLACEMENT_CHAR) and len(self._pending) < _MAX_PENDING_TOKENS:
            return []

        self._pending = []
        return self._decoder.push(text)

    def feed_token(self, token_id: int) -> List[HarmonyEvent]:
        """Decode a single token ID and push the resulting text."""
        return self.feed([token_id])

    def flush(self) -> List[HarmonyEvent]:
        """Push any held tokens and flush the decoder."""
        events: List[HarmonyEvent] = []
        if self._pending:
            events.extend(self._decoder.push(self.encoding.decode(self._pending)))
            self._pending = []
        events.extend(self._decoder.flush())
        return events

    def reset(self) -> None:
        """Start a new turn with a fresh decoder."""
        self._pending = []
        self._decoder = self._new_decoder()
