"""Runtime stream state cell.

One instance is created at boot and handed to both the encoder supervisor
and the engagement scheduler. Only the supervisor writes to it; everything
else reads. All access happens on the event loop thread.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from services.encoder.models import ProcessHandle, StreamConfig, StreamPhase


@dataclass
class StreamState:
    phase: StreamPhase = StreamPhase.IDLE
    handle: Optional[ProcessHandle] = None
    last_config: Optional[StreamConfig] = None
    restart_count: int = 0
    last_exit_code: Optional[int] = None

    @property
    def is_streaming(self) -> bool:
        return self.handle is not None

    @property
    def busy(self) -> bool:
        """A handle exists or a launch is in flight."""
        return self.handle is not None or self.phase == StreamPhase.LAUNCHING

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "running": self.is_streaming,
            "pid": self.handle.pid if self.handle else None,
            "restart_count": self.restart_count,
            "last_exit_code": self.last_exit_code,
            "has_replay_config": self.last_config is not None,
        }


__all__ = ["StreamState"]
