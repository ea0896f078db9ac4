from __future__ import annotations

import asyncio
import os
import sys
import tempfile
from pathlib import Path
from typing import List

import pytest

ROOT = str(Path(__file__).resolve().parents[1])
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# keep per-run log files out of the working tree
os.environ.setdefault("LOFILIVE_LOG_DIR", str(Path(tempfile.gettempdir()) / "lofilive-test-logs"))


class FakeProcess:
    """Stands in for asyncio.subprocess.Process."""

    _next_pid = 4000

    def __init__(self, stderr=None):
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.returncode = None
        self.signals: List[int] = []
        self.killed = False
        self.stdout = None
        self.stderr = stderr
        self._exited = asyncio.Event()

    async def wait(self):
        await self._exited.wait()
        return self.returncode

    def exit(self, code):
        if self._exited.is_set():
            return
        self.returncode = code
        self._exited.set()

    def send_signal(self, sig):
        self.signals.append(sig)
        # ffmpeg exits with 255 after SIGINT
        self.exit(255)

    def kill(self):
        self.killed = True
        self.exit(-9)


class FakeSpawner:
    """Records every spawn; optionally raises or yields to the loop first."""

    def __init__(self, *, error: Exception | None = None, auto_exit_on_signal: bool = True):
        self.calls: List[List[str]] = []
        self.processes: List[FakeProcess] = []
        self.error = error
        self.auto_exit_on_signal = auto_exit_on_signal

    async def __call__(self, *cmd):
        # a real spawn suspends; make the window visible to concurrent callers
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        self.calls.append(list(cmd))
        process = FakeProcess()
        if not self.auto_exit_on_signal:
            process.send_signal = process.signals.append
        self.processes.append(process)
        return process

    @property
    def count(self) -> int:
        return len(self.calls)


@pytest.fixture
def media(tmp_path: Path):
    video = tmp_path / "loop.mp4"
    audio = tmp_path / "mix.m4a"
    video.write_bytes(b"\x00" * 16)
    audio.write_bytes(b"\x00" * 16)
    return video, audio


@pytest.fixture
def spawner():
    return FakeSpawner()


@pytest.fixture
def spawner_factory():
    return FakeSpawner
