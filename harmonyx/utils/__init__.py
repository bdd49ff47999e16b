# SPDX-License-Identifier: Apache-2.0
"""Utility modules for harmonyx."""

from .json_salvage import (
    JsonOutcome,
    decode_json_strict,
    find_balanced_json_slice,
    normalize,
    parse_loose,
    repair_trailing_commas,
    salvage_json,
)

__all__ = [
    "JsonOutcome",
    "normalize",
    "parse_loose",
    "salvage_json",
    "decode_json_strict",
    "find_balanced_json_slice",
    "repair_trailing_commas",
]
