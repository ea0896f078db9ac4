from dataclasses import dataclass
from typing import Optional


@dataclass
class YouTubeLivestream:
    """
    Lightweight metadata carrier for the active YouTube broadcast.
    """

    stream_id: str
    channel_id: Optional[str] = None
    title: Optional[str] = None
    live_chat_id: Optional[str] = None
    status: str | None = None  # e.g., "live", "testing", "complete"

    def is_live(self) -> bool:
        return (self.status or "").lower() == "live"
