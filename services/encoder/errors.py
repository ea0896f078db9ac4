from __future__ import annotations

from typing import Optional


class StreamError(RuntimeError):
    """Base class for stream supervisor failures."""

    code = "StreamError"


class InvalidConfig(StreamError):
    """Missing or invalid launch input. Raised before anything is spawned."""

    code = "InvalidConfig"


class AlreadyRunning(StreamError):
    code = "AlreadyRunning"


class NotRunning(StreamError):
    code = "NotRunning"


class EncoderLaunchFailed(StreamError):
    """The encoder binary could not be spawned (missing ffmpeg, permissions)."""

    code = "EncoderLaunchFailed"


class EncoderCrash(StreamError):
    """
    Abnormal encoder exit.

    Only ever logged by the supervisor; `start()` has already returned when
    a crash is observed, so nothing waits on this.
    """

    code = "EncoderCrash"

    def __init__(self, returncode: Optional[int], stderr_tail: str = ""):
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        super().__init__(f"ffmpeg exited abnormally (code={returncode})")


class LaunchAborted(EncoderLaunchFailed):
    """A stop or shutdown arrived while ffmpeg was being spawned; the new process was discarded."""

    code = "LaunchAborted"
