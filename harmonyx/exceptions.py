# SPDX-License-Identifier: Apache-2.0
"""
Custom exception hierarchy for harmonyx.

This module provides a structured exception hierarchy for the decoder, the
JSON salvage layer and tool-call collection.

Usage:
    from harmonyx.exceptions import HarmonyParseError, JsonSalvageError

    try:
        value = parse_loose(text)
    except JsonSalvageError as e:
        # Fall back to the raw text
        logger.debug(f"Salvage failed: {e}")
"""

from enum import Enum
from typing import Any, Optional


class HarmonyxError(Exception):
    """
    Base exception for all harmonyx errors.

    All custom exceptions in harmonyx should inherit from this class to allow
    for easy catching of all harmonyx-related errors.
    """

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


# =============================================================================
# Harmony Parse Errors
# =============================================================================


class HarmonyErrorCode(str, Enum):
    """Closed set of Harmony transcript error codes."""

    MISSING_START = "MissingStart"
    MISSING_MESSAGE_TOKEN = "MissingMessageToken"
    MISSING_CHANNEL_TOKEN = "MissingChannelToken"
    MISSING_SENTINEL = "MissingSentinel"
    INVALID_HEADER = "InvalidHeader"
    FINAL_MISSING = "FinalMissing"
    FINAL_NOT_RETURN = "FinalNotReturn"
    JSON_PARSE_ERROR = "JsonParseError"


# Structural grammar errors are produced by the parser itself; contract
# errors only by the plan/batch wrappers after a valid parse.
STRUCTURAL_ERROR_CODES = frozenset(
    {
        HarmonyErrorCode.MISSING_START,
        HarmonyErrorCode.MISSING_MESSAGE_TOKEN,
        HarmonyErrorCode.MISSING_CHANNEL_TOKEN,
        HarmonyErrorCode.MISSING_SENTINEL,
        HarmonyErrorCode.INVALID_HEADER,
    }
)
CONTRACT_ERROR_CODES = frozenset(
    {
        HarmonyErrorCode.FINAL_MISSING,
        HarmonyErrorCode.FINAL_NOT_RETURN,
    }
)


class HarmonyParseError(HarmonyxError):
    """
    A Harmony transcript could not be parsed or violated the final contract.

    Attributes:
        code: The HarmonyErrorCode identifying the failure.
    """

    def __init__(
        self,
        code: HarmonyErrorCode,
        message: str,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
        self.code = HarmonyErrorCode(code)

    @property
    def is_structural(self) -> bool:
        """True for grammar errors raised by the parser itself."""
        return self.code in STRUCTURAL_ERROR_CODES

    def to_dict(self) -> dict[str, Any]:
        """Convert to the {code, message} error shape."""
        return {"code": self.code.value, "message": self.message}

    def __repr__(self) -> str:
        return f"HarmonyParseError(code={self.code.value!r}, message={self.message!r})"


# =============================================================================
# JSON Salvage Errors
# =============================================================================


class JsonSalvageError(HarmonyxError):
    """
    No JSON value could be recovered from the input.

    The underlying json.JSONDecodeError (if any attempt ran) is chained as
    __cause__.
    """

    pass


# =============================================================================
# Tool Collection Errors
# =============================================================================


class ToolCollectionError(HarmonyxError):
    """
    Collecting tool-call arguments from a stream failed.

    Attributes:
        tool_name: The tool being collected, if a single target was requested.
    """

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
        self.tool_name = tool_name


class ToolArgsParseError(ToolCollectionError):
    """Accumulated tool-call arguments could not be parsed as JSON."""

    pass


class ToolCollectionTimeoutError(ToolCollectionError):
    """The stream did not finish within the collection timeout."""

    def __init__(
        self,
        message: str,
        timeout: Optional[float] = None,
        tool_name: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, tool_name=tool_name, details=details)
        self.timeout = timeout


# =============================================================================
# Configuration-related Exceptions
# =============================================================================


class ConfigurationError(HarmonyxError):
    """
    Configuration is invalid or inconsistent.

    Attributes:
        config_key: The configuration key that is invalid.
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
        self.config_key = config_key
