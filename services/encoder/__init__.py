"""Live encoder supervision (ffmpeg)."""

from .errors import (
    AlreadyRunning,
    EncoderCrash,
    EncoderLaunchFailed,
    InvalidConfig,
    LaunchAborted,
    NotRunning,
    StreamError,
)
from .models import AudioKind, AudioSource, ExitReason, StreamConfig, StreamPhase
from .supervisor import StreamSupervisor

__all__ = [
    "AlreadyRunning",
    "AudioKind",
    "AudioSource",
    "EncoderCrash",
    "EncoderLaunchFailed",
    "ExitReason",
    "InvalidConfig",
    "LaunchAborted",
    "NotRunning",
    "StreamConfig",
    "StreamError",
    "StreamPhase",
    "StreamSupervisor",
]
