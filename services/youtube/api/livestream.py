from typing import Optional

from services.youtube.api.http import YouTubeApiBase
from services.youtube.models.stream import YouTubeLivestream
from shared.logging.logger import get_logger

log = get_logger("youtube.livestream")


class YouTubeLivestreamAPI(YouTubeApiBase):
    """
    Live broadcast discovery for the authenticated channel.

    Responsibilities:
    - Find the broadcast that is currently active
    - Prefer a broadcast that is live over one still in testing
    - Resolve its liveChatId
    - Return normalized YouTubeLivestream metadata

    Read-only and safe to call repeatedly.
    """

    async def get_active_livestream(self) -> Optional[YouTubeLivestream]:
        params = {
            "part": "id,snippet,status",
            "broadcastStatus": "active",
            "broadcastType": "all",
            "maxResults": 5,
        }

        data = await self._request("GET", "liveBroadcasts", params=params)

        items = data.get("items", [])
        if not items:
            log.debug("[YouTube] No active broadcast for authenticated channel")
            return None

        candidates = []
        for item in items:
            snippet = item.get("snippet", {})
            live_chat_id = snippet.get("liveChatId")
            if not live_chat_id:
                continue

            candidates.append(
                YouTubeLivestream(
                    stream_id=item.get("id"),
                    channel_id=snippet.get("channelId"),
                    title=snippet.get("title"),
                    live_chat_id=live_chat_id,
                    status=(item.get("status") or {}).get("lifeCycleStatus"),
                )
            )

        if not candidates:
            log.debug("[YouTube] Active broadcast has no live chat")
            return None

        # "active" also matches broadcasts still in testing; prefer the public one
        for livestream in candidates:
            if livestream.is_live():
                return livestream
        return candidates[0]

    async def get_active_live_chat_id(self) -> Optional[str]:
        livestream = await self.get_active_livestream()
        return livestream.live_chat_id if livestream else None
