"""
Scripted chat message pool.

The pool is plain configuration: a JSON list of strings, or the defaults
below when no file is configured.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Tuple

from shared.logging.logger import get_logger

log = get_logger("engagement.messages")

DEFAULT_MESSAGES: Tuple[str, ...] = (
    "🎧 Welcome in! Grab a drink and stay a while.",
    "If the music is helping you focus, a like helps the stream reach more people 🙏",
    "Where are you listening from today? 🌍",
    "Studying, working or resting? Tell us in the chat ✍️",
    "New here? Subscribe so the stream is always one click away 🔔",
    "Take a breath, stretch your shoulders, drink some water 💧",
    "Thanks for keeping us company. Peace to your day ✨",
)


def load_message_pool(path: Optional[Path | str] = None) -> Tuple[str, ...]:
    """
    Load the message pool from a JSON list.

    Missing or malformed files fall back to DEFAULT_MESSAGES with a warning.
    """
    if not path:
        return DEFAULT_MESSAGES

    p = Path(path)
    if not p.exists():
        log.warning(f"Message pool not found at {p}; using defaults")
        return DEFAULT_MESSAGES

    try:
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        log.warning(f"Failed to load message pool ({e}); using defaults")
        return DEFAULT_MESSAGES

    if not isinstance(data, list):
        log.warning("Message pool root is not a list; using defaults")
        return DEFAULT_MESSAGES

    messages = tuple(str(m).strip() for m in data if isinstance(m, str) and m.strip())
    if not messages:
        log.warning("Message pool is empty; using defaults")
        return DEFAULT_MESSAGES

    log.info(f"Loaded {len(messages)} engagement message(s) from {p}")
    return messages
