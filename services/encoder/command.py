from __future__ import annotations

import shutil
from pathlib import Path
from typing import List, Optional

from services.encoder.filter_graph import (
    AUDIO_LABEL,
    VIDEO_LABEL,
    OverlayStyle,
    DEFAULT_STYLE,
    compile_filter_graph,
)
from services.encoder.models import AudioKind, AudioSource, StreamConfig
from shared.logging.logger import get_logger

log = get_logger("encoder.command")

# Fixed live-push parameters (RTMP ingest friendly)
VIDEO_CODEC_ARGS = [
    "-c:v", "libx264",
    "-preset", "veryfast",
    "-b:v", "3000k",
    "-maxrate", "3000k",
    "-bufsize", "6000k",
    "-g", "120",
    "-pix_fmt", "yuv420p",
]

AUDIO_CODEC_ARGS = [
    "-c:a", "aac",
    "-b:a", "160k",
    "-ar", "44100",
    "-ac", "2",
]

OUTPUT_FORMAT = "flv"


class EncoderCommandBuilder:
    """
    Assembles the ffmpeg argv for a StreamConfig.

    Playlist audio is fed through the concat demuxer; the list file is
    written under `work_dir` on every build so a replay picks up the same
    ordering.
    """

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        work_dir: Path | str = "runtime/encoder",
        style: OverlayStyle = DEFAULT_STYLE,
    ):
        self._ffmpeg_path = ffmpeg_path
        self._work_dir = Path(work_dir)
        self._style = style

    @property
    def ffmpeg_path(self) -> str:
        # Prefer configured path; fall back to system ffmpeg if missing
        configured = Path(self._ffmpeg_path)
        if configured.exists():
            return str(configured)
        if shutil.which(self._ffmpeg_path):
            return self._ffmpeg_path
        log.warning(f"Configured ffmpeg not found at {configured}; falling back to PATH")
        return "ffmpeg"

    @property
    def playlist_path(self) -> Path:
        return self._work_dir / "playlist.txt"

    def build(self, config: StreamConfig) -> List[str]:
        graph = compile_filter_graph(
            config.track_text,
            config.cta_text,
            config.show_cta,
            config.track_seconds,
            config.cta_seconds,
            style=self._style,
        )

        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostats",
            "-loglevel", "warning",
            "-stream_loop", "-1", "-re", "-i", str(config.video_path),
            *self._audio_input_args(config.audio),
            "-filter_complex", graph,
            "-map", f"[{VIDEO_LABEL}]",
            "-map", f"[{AUDIO_LABEL}]",
            *VIDEO_CODEC_ARGS,
            *AUDIO_CODEC_ARGS,
            "-f", OUTPUT_FORMAT,
            config.rtmp_url,
        ]

    # ------------------------------------------------------------

    def _audio_input_args(self, audio: AudioSource) -> List[str]:
        if audio.kind == AudioKind.PLAYLIST:
            list_file = self.write_playlist(audio)
            return [
                "-f", "concat",
                "-safe", "0",
                "-stream_loop", "-1",
                "-re", "-i", str(list_file),
            ]

        return ["-stream_loop", "-1", "-re", "-i", str(audio.paths[0])]

    def write_playlist(self, audio: AudioSource, path: Optional[Path] = None) -> Path:
        target = Path(path) if path else self.playlist_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(render_concat_list(audio.paths), encoding="utf-8")
        log.debug(f"Wrote concat playlist ({len(audio.paths)} tracks) to {target}")
        return target


def render_concat_list(paths) -> str:
    """
    Render a concat demuxer list. Single quotes inside a path are closed,
    escaped and reopened: ' -> '\\''
    """
    lines = []
    for raw in paths:
        resolved = str(Path(raw).resolve())
        quoted = resolved.replace("'", "'\\''")
        lines.append(f"file '{quoted}'")
    return "\n".join(lines) + "\n"
