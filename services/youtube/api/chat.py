from datetime import datetime, timezone
from typing import Dict, Optional

from services.youtube.api.errors import ExternalApiError
from services.youtube.api.http import YouTubeApiBase
from services.youtube.models.message import ChatPage, YouTubeChatMessage
from shared.logging.logger import get_logger

log = get_logger("youtube.chat")


class YouTubeChatClient(YouTubeApiBase):
    """
    YouTube Live Chat via the Data API v3.

    Responsibilities:
    - List liveChat/messages one page at a time
    - Insert text messages
    - Normalize payloads into YouTubeChatMessage

    Scheduling (poll cadence, dedupe of already-seen pages) belongs to the
    caller; every method here is a single request.
    """

    MESSAGES_PATH = "liveChat/messages"

    async def list_messages(
        self,
        live_chat_id: str,
        page_token: Optional[str] = None,
    ) -> ChatPage:
        if not live_chat_id:
            raise ExternalApiError("live_chat_id is required")

        params = {
            "part": "snippet,authorDetails",
            "liveChatId": live_chat_id,
        }
        if page_token:
            params["pageToken"] = page_token

        data = await self._request("GET", self.MESSAGES_PATH, params=params)

        messages = [
            self._normalize_message(item, live_chat_id)
            for item in data.get("items", [])
            if item.get("id")
        ]

        interval_ms = data.get("pollingIntervalMillis")
        polling_interval = (
            interval_ms / 1000.0
            if isinstance(interval_ms, (int, float))
            else None
        )

        log.debug(
            f"[YouTube] listed {len(messages)} message(s) "
            f"(liveChatId={live_chat_id}, next={data.get('nextPageToken')})"
        )

        return ChatPage(
            messages=messages,
            next_page_token=data.get("nextPageToken"),
            polling_interval=polling_interval,
        )

    async def insert_message(self, live_chat_id: str, text: str) -> Dict:
        if not live_chat_id:
            raise ExternalApiError("live_chat_id is required")
        if not text:
            raise ExternalApiError("message text is empty")

        body = {
            "snippet": {
                "liveChatId": live_chat_id,
                "type": "textMessageEvent",
                "textMessageDetails": {"messageText": text},
            }
        }

        data = await self._request(
            "POST",
            self.MESSAGES_PATH,
            params={"part": "snippet"},
            json=body,
        )
        log.debug(f"[YouTube] message posted (id={data.get('id')})")
        return data

    # ------------------------------------------------------------------ #
    # Normalization helpers
    # ------------------------------------------------------------------ #

    def _normalize_message(self, payload: Dict, live_chat_id: str) -> YouTubeChatMessage:
        snippet = payload.get("snippet", {})
        author_details = payload.get("authorDetails", {})

        return YouTubeChatMessage(
            raw=payload,
            live_chat_id=snippet.get("liveChatId", live_chat_id),
            message_id=payload.get("id"),
            author_name=author_details.get("displayName") or "unknown",
            author_channel_id=author_details.get("channelId"),
            text=snippet.get("displayMessage") or "",
            published_at=self._parse_published_at(snippet.get("publishedAt")),
            is_owner=bool(author_details.get("isChatOwner")),
            is_moderator=bool(author_details.get("isChatModerator")),
        )

    @staticmethod
    def _parse_published_at(raw: Optional[str]) -> Optional[datetime]:
        if not raw:
            return None
        try:
            ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            return ts.astimezone(timezone.utc)
        except ValueError:
            return None
