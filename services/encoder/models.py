from __future__ import annotations

import asyncio
import os
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Tuple

from services.encoder.errors import InvalidConfig

STDERR_TAIL_LINES = 40


class AudioKind(str, Enum):
    FILE = "file"
    PLAYLIST = "playlist"


@dataclass(frozen=True)
class AudioSource:
    """
    Audio input for the encoder.

    - FILE: one file, looped forever
    - PLAYLIST: ordered files, concatenated and looped forever
    """

    kind: AudioKind
    paths: Tuple[str, ...]

    @classmethod
    def file(cls, path: str) -> "AudioSource":
        return cls(kind=AudioKind.FILE, paths=(str(path),))

    @classmethod
    def playlist(cls, paths) -> "AudioSource":
        return cls(kind=AudioKind.PLAYLIST, paths=tuple(str(p) for p in paths))


@dataclass(frozen=True)
class StreamConfig:
    """
    Everything needed to launch one encoder process.

    Immutable so the supervisor can keep the accepted instance and replay it
    verbatim after a crash.
    """

    video_path: str
    audio: AudioSource
    rtmp_url: str
    track_text: str = ""
    cta_text: str = ""
    show_cta: bool = True
    track_seconds: float = 6
    cta_seconds: float = 5

    def validate(self) -> None:
        """
        Raise InvalidConfig for the first problem found.
        """
        if not self.rtmp_url or not str(self.rtmp_url).strip():
            raise InvalidConfig("RTMP destination URL is missing")

        _require_readable_file(self.video_path, "video source")

        if not self.audio.paths:
            raise InvalidConfig("audio source has no files")
        if self.audio.kind == AudioKind.FILE and len(self.audio.paths) != 1:
            raise InvalidConfig("single-file audio source must name exactly one file")
        for path in self.audio.paths:
            _require_readable_file(path, "audio source")

        for name in ("track_seconds", "cta_seconds"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
                raise InvalidConfig(f"{name} must be a non-negative number of seconds")


def _require_readable_file(path: Optional[str], label: str) -> None:
    if not path:
        raise InvalidConfig(f"{label} path is missing")
    p = Path(path)
    if not p.is_file():
        raise InvalidConfig(f"{label} not found: {path}")
    if not os.access(p, os.R_OK):
        raise InvalidConfig(f"{label} is not readable: {path}")


class StreamPhase(str, Enum):
    IDLE = "idle"
    LAUNCHING = "launching"
    RUNNING = "running"
    EXITING = "exiting"
    CRASHED = "crashed"


@dataclass(frozen=True)
class ExitReason:
    """
    How an encoder process ended.

    expected: the exit followed a stop request, or the return code was clean.
    """

    expected: bool
    code: Optional[int] = None

    @classmethod
    def from_returncode(cls, code: Optional[int], *, stop_requested: bool) -> "ExitReason":
        if stop_requested or code in (None, 0):
            return cls(expected=True, code=code)
        return cls(expected=False, code=code)


@dataclass
class ProcessHandle:
    process: Any
    config: StreamConfig
    started_at: float = field(default_factory=time.time)
    stop_requested: bool = False
    exited: Optional[asyncio.Future] = None
    stderr_tail: deque = field(default_factory=lambda: deque(maxlen=STDERR_TAIL_LINES))

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.process, "pid", None)
