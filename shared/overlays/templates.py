"""
Overlay text templates.

Display strings shown on the stream are built from small templates with
named `{placeholder}` tokens:

- track overlay:   "{title} — {artist}"
- call-to-action:  "Live: {live_title} • {channel_name} — Subscribe!"

Rendering is literal and single-pass. Unknown tokens are left verbatim so a
typo in a template shows up on screen instead of crashing the encoder
launch.

`sanitize_drawtext` escapes a display string for ffmpeg's drawtext option
syntax. The filter-graph compiler calls it on every string it embeds.
"""

from __future__ import annotations

import re
from typing import Mapping, Optional

_TOKEN_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

DEFAULT_TRACK_TEMPLATE = "{title} — {artist}"
DEFAULT_CTA_TEMPLATE = "Live: {live_title} • {channel_name} — Subscribe!"


def render_template(template: str, values: Mapping[str, object]) -> str:
    """
    Substitute `{token}` placeholders with `values`.

    Substituted values are never rescanned, so a value that itself contains
    `{token}` text is emitted as-is.
    """
    if not template:
        return ""

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        value = values[key]
        return "" if value is None else str(value)

    return _TOKEN_RE.sub(_replace, template)


def render_track_text(template: str, *, title: str, artist: str) -> str:
    return render_template(template, {"title": title, "artist": artist})


def render_cta_text(template: str, *, live_title: str, channel_name: str) -> str:
    return render_template(
        template,
        {"live_title": live_title, "channel_name": channel_name},
    )


def sanitize_drawtext(text: Optional[str]) -> str:
    """
    Escape text for a drawtext `text='...'` option.

    Backslashes are doubled first; escaping them later would double the
    backslashes introduced for `:` and `'`.
    """
    if not text:
        return ""

    return (
        text.replace("\\", "\\\\")
        .replace(":", "\\:")
        .replace("'", "\\'")
        .replace("\n", " ")
        .replace("\r", " ")
    )


__all__ = [
    "DEFAULT_TRACK_TEMPLATE",
    "DEFAULT_CTA_TEMPLATE",
    "render_template",
    "render_track_text",
    "render_cta_text",
    "sanitize_drawtext",
]
