"""
Runtime settings loader.

Settings come from the process environment (populated from `.env` by
python-dotenv at boot). Malformed values never abort startup: they fall
back to defaults with a warning.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional

from services.encoder.models import AudioSource, StreamConfig
from shared.logging.logger import get_logger
from shared.overlays.templates import (
    DEFAULT_CTA_TEMPLATE,
    DEFAULT_TRACK_TEMPLATE,
    render_cta_text,
    render_track_text,
)

log = get_logger("shared.config.stream")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass
class OverlaySettings:
    live_title: str = "Lofi Worship Chill Music"
    channel_name: str = "Lofi Worship"
    track_template: str = DEFAULT_TRACK_TEMPLATE
    track_title: str = "Track"
    track_artist: str = "Artist"
    show_cta: bool = True
    cta_template: str = DEFAULT_CTA_TEMPLATE
    track_seconds: float = 6
    cta_seconds: float = 5


@dataclass
class StreamSettings:
    rtmp_url: str = ""
    video_path: str = "/srv/lofi/video/loop.mp4"
    audio_path: str = "/srv/lofi/audio/playlist.m4a"
    # m3u/txt file listing tracks; takes precedence over audio_path
    audio_playlist: Optional[str] = None
    ffmpeg_path: str = "ffmpeg"
    work_dir: str = "runtime/encoder"
    restart_delay: float = 30.0
    overlay: OverlaySettings = field(default_factory=OverlaySettings)

    def audio_source(self) -> AudioSource:
        if self.audio_playlist:
            return AudioSource.playlist(read_playlist_file(self.audio_playlist))
        return AudioSource.file(self.audio_path)

    def source_files_exist(self) -> bool:
        if not self.video_path or not Path(self.video_path).is_file():
            return False
        try:
            audio = self.audio_source()
        except OSError:
            return False
        return bool(audio.paths) and all(Path(p).is_file() for p in audio.paths)

    def stream_config(
        self,
        *,
        title: Optional[str] = None,
        artist: Optional[str] = None,
        show_cta: Optional[bool] = None,
        cta_text: Optional[str] = None,
        track_text: Optional[str] = None,
    ) -> StreamConfig:
        """
        Build a StreamConfig from settings plus per-request overrides.

        `track_text` replaces the rendered track template outright;
        `cta_text` replaces the CTA template and is still rendered, so it may
        use {live_title} / {channel_name}.
        """
        overlay = self.overlay

        if track_text is None:
            track_text = render_track_text(
                overlay.track_template,
                title=title if title is not None else overlay.track_title,
                artist=artist if artist is not None else overlay.track_artist,
            )

        rendered_cta = render_cta_text(
            cta_text if cta_text is not None else overlay.cta_template,
            live_title=overlay.live_title,
            channel_name=overlay.channel_name,
        )

        try:
            audio = self.audio_source()
        except OSError as e:
            log.warning(f"Audio playlist unreadable ({e})")
            audio = AudioSource.playlist([])

        return StreamConfig(
            video_path=self.video_path,
            audio=audio,
            rtmp_url=self.rtmp_url,
            track_text=track_text,
            cta_text=rendered_cta,
            show_cta=overlay.show_cta if show_cta is None else bool(show_cta),
            track_seconds=overlay.track_seconds,
            cta_seconds=overlay.cta_seconds,
        )


@dataclass
class EngagementSettings:
    enabled: bool = True
    interval_seconds: float = 12 * 60
    inactivity_seconds: float = 90 * 60
    cooldown_seconds: float = 30 * 60
    liveness_seconds: float = 15
    messages_file: Optional[str] = None
    access_token: Optional[str] = None


@dataclass
class ControlApiSettings:
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass
class RuntimeSettings:
    stream: StreamSettings
    engagement: EngagementSettings
    api: ControlApiSettings


# ------------------------------------------------------------
# Parsing helpers
# ------------------------------------------------------------

def _str(env: Mapping[str, str], key: str, default: Optional[str]) -> Optional[str]:
    value = env.get(key)
    if value is None or value == "":
        return default
    return value


def _float(env: Mapping[str, str], key: str, default: float, *, minimum: float = 0.0) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        log.warning(f"{key} must be a number (got {raw!r}); defaulting to {default}")
        return default
    if value < minimum:
        log.warning(f"{key} must be >= {minimum} (got {raw!r}); defaulting to {default}")
        return default
    return value


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning(f"{key} must be an integer (got {raw!r}); defaulting to {default}")
        return default


def _bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    log.warning(f"{key} must be boolean (got {raw!r}); defaulting to {default}")
    return default


def read_playlist_file(path: str) -> List[str]:
    """
    Read an m3u-style list: one path per line, '#' lines ignored, relative
    paths resolved against the list's directory.
    """
    list_path = Path(path)
    base = list_path.parent
    tracks: List[str] = []

    with list_path.open("r", encoding="utf-8") as f:
        for line in f:
            entry = line.strip()
            if not entry or entry.startswith("#"):
                continue
            track = Path(entry)
            if not track.is_absolute():
                track = base / track
            tracks.append(str(track))

    return tracks


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------

def load_overlay_settings(env: Mapping[str, str]) -> OverlaySettings:
    d = OverlaySettings()
    return OverlaySettings(
        live_title=_str(env, "LIVE_TITLE", d.live_title),
        channel_name=_str(env, "CHANNEL_NAME", d.channel_name),
        track_template=_str(env, "OVERLAY_TRACK_TEMPLATE", d.track_template),
        track_title=_str(env, "TRACK_TITLE", d.track_title),
        track_artist=_str(env, "TRACK_ARTIST", d.track_artist),
        show_cta=_bool(env, "SHOW_CTA", d.show_cta),
        cta_template=_str(env, "CTA_TEXT", d.cta_template),
        track_seconds=_float(env, "TRACK_OVERLAY_SECONDS", d.track_seconds),
        cta_seconds=_float(env, "CTA_SECONDS", d.cta_seconds),
    )


def load_stream_settings(env: Optional[Mapping[str, str]] = None) -> StreamSettings:
    env = env if env is not None else os.environ
    d = StreamSettings()

    settings = StreamSettings(
        rtmp_url=_str(env, "RTMP_URL", d.rtmp_url),
        video_path=_str(env, "BASE_VIDEO", d.video_path),
        audio_path=_str(env, "AUDIO_FILE", d.audio_path),
        audio_playlist=_str(env, "AUDIO_PLAYLIST", d.audio_playlist),
        ffmpeg_path=_str(env, "FFMPEG_PATH", d.ffmpeg_path),
        work_dir=_str(env, "ENCODER_WORK_DIR", d.work_dir),
        restart_delay=_float(env, "RESTART_DELAY_SECONDS", d.restart_delay),
        overlay=load_overlay_settings(env),
    )

    if not settings.rtmp_url:
        log.warning("RTMP_URL is not set; /stream/start will be rejected")

    return settings


def load_engagement_settings(env: Optional[Mapping[str, str]] = None) -> EngagementSettings:
    env = env if env is not None else os.environ
    d = EngagementSettings()

    return EngagementSettings(
        enabled=_bool(env, "ENGAGEMENT_ENABLED", d.enabled),
        interval_seconds=_float(env, "ENGAGEMENT_INTERVAL_SECONDS", d.interval_seconds, minimum=1.0),
        inactivity_seconds=_float(env, "ENGAGEMENT_INACTIVITY_SECONDS", d.inactivity_seconds),
        cooldown_seconds=_float(env, "ENGAGEMENT_COOLDOWN_SECONDS", d.cooldown_seconds),
        liveness_seconds=_float(env, "CHAT_POLL_SECONDS", d.liveness_seconds),
        messages_file=_str(env, "ENGAGEMENT_MESSAGES_FILE", d.messages_file),
        access_token=_str(env, "YOUTUBE_ACCESS_TOKEN", d.access_token),
    )


def load_api_settings(env: Optional[Mapping[str, str]] = None) -> ControlApiSettings:
    env = env if env is not None else os.environ
    d = ControlApiSettings()
    return ControlApiSettings(
        host=_str(env, "HOST", d.host),
        port=_int(env, "PORT", d.port),
    )


def load_runtime_settings(env: Optional[Mapping[str, Any]] = None) -> RuntimeSettings:
    env = env if env is not None else os.environ
    return RuntimeSettings(
        stream=load_stream_settings(env),
        engagement=load_engagement_settings(env),
        api=load_api_settings(env),
    )
