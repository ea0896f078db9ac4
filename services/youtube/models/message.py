from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class YouTubeChatMessage:
    """
    Normalized YouTube live chat message.

    Only the fields the engagement scheduler needs are lifted out of the
    liveChatMessage resource; the raw payload is kept for logging.
    """

    raw: Dict[str, Any]
    live_chat_id: str
    message_id: Optional[str]
    author_name: str
    text: str

    author_channel_id: Optional[str] = None
    published_at: Optional[datetime] = None
    is_owner: bool = False
    is_moderator: bool = False

    @property
    def is_human(self) -> bool:
        """
        Authored by a viewer rather than the channel or its moderators.
        """
        return not (self.is_owner or self.is_moderator)


@dataclass
class ChatPage:
    """One liveChatMessages.list response."""

    messages: List[YouTubeChatMessage] = field(default_factory=list)
    next_page_token: Optional[str] = None
    polling_interval: Optional[float] = None  # seconds, server advised
