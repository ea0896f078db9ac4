"""Release identifiers for the LofiLive runtime.

Logged once at boot, served on GET /status and sent as the User-Agent of
outbound API calls.
"""

from __future__ import annotations

PROJECT_NAME = "LofiLive Runtime"
VERSION = "v0.3.0"
BUILD = "2026.10"


def as_dict() -> dict[str, str]:
    return {
        "project": PROJECT_NAME,
        "version": VERSION,
        "build": BUILD,
    }


def as_string() -> str:
    return f"{PROJECT_NAME} {VERSION} (Build {BUILD})"


def user_agent() -> str:
    """`LofiLive/0.3.0 (build 2026.10)`"""
    return f"LofiLive/{VERSION.lstrip('v')} (build {BUILD})"
