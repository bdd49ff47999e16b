# SPDX-License-Identifier: Apache-2.0
"""
Pytest configuration and fixtures for harmonyx tests.

This module provides common fixtures used across test files.
"""

import pytest

from harmonyx.settings import reset_settings

from helpers import ANALYSIS, COMMENTARY, FINAL_RETURN, TOOL_CALL, TOOL_RESULT


@pytest.fixture
def plan_transcript() -> str:
    """A planner turn: analysis, a tool call, then the final return."""
    return ANALYSIS + TOOL_CALL + FINAL_RETURN


@pytest.fixture
def full_transcript() -> str:
    """A turn using every message kind."""
    return ANALYSIS + COMMENTARY + TOOL_CALL + TOOL_RESULT + FINAL_RETURN


@pytest.fixture(autouse=True)
def clean_settings():
    """Reset the settings singleton around each test."""
    reset_settings()
    yield
    reset_settings()
