from __future__ import annotations

import re

from shared.overlays.templates import (
    DEFAULT_CTA_TEMPLATE,
    DEFAULT_TRACK_TEMPLATE,
    render_cta_text,
    render_template,
    render_track_text,
    sanitize_drawtext,
)


def test_render_substitutes_known_tokens():
    assert render_template("{title} by {artist}", {"title": "Calm", "artist": "Anon"}) == "Calm by Anon"


def test_render_leaves_unknown_tokens_verbatim():
    assert render_template("{title} / {album}", {"title": "Calm"}) == "Calm / {album}"


def test_render_is_single_pass():
    out = render_template("{a}-{b}", {"a": "{b}", "b": "x"})
    assert out == "{b}-x"


def test_render_replaces_every_occurrence():
    assert render_template("{x}{x}", {"x": "ab"}) == "abab"


def test_default_templates():
    assert render_track_text(DEFAULT_TRACK_TEMPLATE, title="Calm", artist="Anon") == "Calm — Anon"
    cta = render_cta_text(DEFAULT_CTA_TEMPLATE, live_title="Lofi 24/7", channel_name="Aslan")
    assert "Lofi 24/7" in cta and "Aslan" in cta
    assert "{" not in cta


def test_sanitize_escapes_backslash_first():
    assert sanitize_drawtext("a\\:b") == "a\\\\\\:b"


def test_sanitize_escapes_colon_and_quote():
    assert sanitize_drawtext("Live: it's on") == "Live\\: it\\'s on"


def test_sanitize_flattens_newlines():
    assert sanitize_drawtext("one\ntwo\rthree") == "one two three"


def test_sanitize_empty():
    assert sanitize_drawtext("") == ""
    assert sanitize_drawtext(None) == ""


def test_sanitized_output_has_no_unescaped_specials():
    samples = [
        "Track: 'Dawn'\nby \\ Anon",
        "\\\\:''::\r\n",
        "ends with backslash \\",
        "plain",
    ]
    for sample in samples:
        out = sanitize_drawtext(sample)
        assert "\n" not in out and "\r" not in out
        # every ':' and "'" is preceded by an odd run of backslashes
        for match in re.finditer(r"(\\*)([:'])", out):
            assert len(match.group(1)) % 2 == 1, (sample, out)
