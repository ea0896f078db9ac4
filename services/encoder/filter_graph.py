"""
ffmpeg filter graph compiler.

Builds the `-filter_complex` argument for the live encoder:

    [1:a]loudnorm ...[aud];
    [0:v]scale,format,drawbox,drawtext (track) ...[vtmp];
    [vtmp]drawtext (cta) ...[vout]        or   [vtmp]copy[vout]

Label names are fixed here and must match the `-map` arguments built in
services.encoder.command. Every display string is escaped before it is
embedded; callers pass raw text.
"""

from __future__ import annotations

from dataclasses import dataclass

from shared.overlays.templates import sanitize_drawtext

VIDEO_INPUT = "0:v"
AUDIO_INPUT = "1:a"

AUDIO_LABEL = "aud"
VIDEO_TMP_LABEL = "vtmp"
VIDEO_LABEL = "vout"

STAGE_SEPARATOR = ";"

# EBU R128 targets suited to streaming platforms
LOUDNESS_TARGET = -14
TRUE_PEAK = -1.5
LOUDNESS_RANGE = 11


@dataclass(frozen=True)
class OverlayStyle:
    width: int = 1280
    height: int = 720
    pixel_format: str = "yuv420p"

    bold_font: str = "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"
    regular_font: str = "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"

    box_color: str = "0x00000088"
    box_y: int = 600
    box_height: int = 120

    track_x: int = 20
    track_y: int = 640
    track_font_size: int = 36

    cta_y: int = 40
    cta_font_size: int = 30

    font_color: str = "white"


DEFAULT_STYLE = OverlayStyle()


def _seconds(value: float) -> str:
    if value < 0:
        raise ValueError(f"overlay duration must be non-negative (got {value})")
    return f"{value:g}"


def _enable_window(seconds: float) -> str:
    return f"enable='between(t,0,{_seconds(seconds)})'"


def _audio_stage() -> str:
    return (
        f"[{AUDIO_INPUT}]loudnorm=I={LOUDNESS_TARGET}:TP={TRUE_PEAK}:LRA={LOUDNESS_RANGE}"
        f"[{AUDIO_LABEL}]"
    )


def _video_stage(track_text: str, track_seconds: float, style: OverlayStyle) -> str:
    window = _enable_window(track_seconds)
    return (
        f"[{VIDEO_INPUT}]scale={style.width}:{style.height},format={style.pixel_format},"
        f"drawbox=x=0:y={style.box_y}:w={style.width}:h={style.box_height}:"
        f"color={style.box_color}:t=fill:{window},"
        f"drawtext=fontfile={style.bold_font}:"
        f"text='{sanitize_drawtext(track_text)}':x={style.track_x}:y={style.track_y}:"
        f"fontsize={style.track_font_size}:fontcolor={style.font_color}:"
        f"{window}[{VIDEO_TMP_LABEL}]"
    )


def _cta_stage(cta_text: str, cta_seconds: float, style: OverlayStyle) -> str:
    return (
        f"[{VIDEO_TMP_LABEL}]drawtext=fontfile={style.regular_font}:"
        f"text='{sanitize_drawtext(cta_text)}':x='(w-text_w)/2':y={style.cta_y}:"
        f"fontsize={style.cta_font_size}:fontcolor={style.font_color}:"
        f"box=1:boxcolor={style.box_color}:"
        f"{_enable_window(cta_seconds)}[{VIDEO_LABEL}]"
    )


def _passthrough_stage() -> str:
    # the output label must exist even without a CTA, -map depends on it
    return f"[{VIDEO_TMP_LABEL}]copy[{VIDEO_LABEL}]"


def compile_filter_graph(
    track_text: str,
    cta_text: str,
    show_cta: bool,
    track_seconds: float,
    cta_seconds: float,
    *,
    style: OverlayStyle = DEFAULT_STYLE,
) -> str:
    """
    Compile overlay settings into a filter graph string.

    Pure and deterministic. A duration of 0 produces an overlay that is
    never visible.
    """
    stages = [
        _audio_stage(),
        _video_stage(track_text, track_seconds, style),
    ]

    if show_cta:
        stages.append(_cta_stage(cta_text, cta_seconds, style))
    else:
        stages.append(_passthrough_stage())

    return STAGE_SEPARATOR.join(stages)


__all__ = [
    "AUDIO_LABEL",
    "VIDEO_LABEL",
    "OverlayStyle",
    "DEFAULT_STYLE",
    "compile_filter_graph",
]
