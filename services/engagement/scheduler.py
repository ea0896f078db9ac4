"""
Engagement Scheduler

Posts scripted messages into the live chat while the stream is up.

Cadence:
- every `interval` seconds post one message picked uniformly from the pool
- when no viewer has written for longer than `inactivity_threshold`,
  pause instead of posting and resume automatically after `cooldown`

Liveness:
- every `liveness_interval` seconds list new chat messages; any message
  not written by the owner or a moderator refreshes the activity timestamp
- messages published before the newest one already counted are history
  (a poll without a page token replays the backlog) and are ignored
- the loop never polls faster than the interval the API advises

Failures talking to the chat API are logged and retried on the next
natural tick. Nothing here stops the stream.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

from services.youtube.api.errors import ExternalApiError
from shared.logging.logger import get_logger

if TYPE_CHECKING:
    from shared.runtime.stream_state import StreamState

log = get_logger("engagement.scheduler")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EngagementMode(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"


@dataclass
class EngagementState:
    mode: EngagementMode = EngagementMode.IDLE
    last_human_activity: float = 0.0
    live_chat_id: Optional[str] = None
    page_token: Optional[str] = None
    paused_until: Optional[float] = None
    messages_posted: int = 0
    post_failures: int = 0
    human_messages_seen: int = 0
    # wall-clock publish time of the newest viewer message already counted
    activity_watermark: Optional[datetime] = None
    poll_interval_hint: Optional[float] = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "live_chat_id": self.live_chat_id,
            "last_human_activity": self.last_human_activity,
            "paused_until": self.paused_until,
            "messages_posted": self.messages_posted,
            "post_failures": self.post_failures,
            "human_messages_seen": self.human_messages_seen,
            "activity_watermark": (
                self.activity_watermark.isoformat() if self.activity_watermark else None
            ),
        }


class EngagementScheduler:
    """
    Owns the cadence, resume and liveness tasks.

    start() replaces any tasks from a previous start; there is never more
    than one cadence loop.
    """

    def __init__(
        self,
        stream_state: StreamState,
        *,
        chat,
        livestream,
        messages: Sequence[str],
        interval: float = 12 * 60,
        inactivity_threshold: float = 90 * 60,
        cooldown: float = 30 * 60,
        liveness_interval: Optional[float] = 15,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = _utcnow,
        rng: Optional[random.Random] = None,
    ):
        if not messages:
            raise ValueError("engagement message pool is empty")

        self._stream_state = stream_state
        self._chat = chat
        self._livestream = livestream
        self._messages = tuple(messages)

        self._interval = interval
        self._inactivity_threshold = inactivity_threshold
        self._cooldown = cooldown
        self._liveness_interval = liveness_interval

        self._clock = clock
        self._wall_clock = wall_clock
        self._rng = rng or random.Random()

        self.state = EngagementState()

        self._cadence_task: Optional[asyncio.Task] = None
        self._resume_task: Optional[asyncio.Task] = None
        self._liveness_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    async def start(self) -> None:
        """
        Start (or restart) the scheduler for a new stream session.
        """
        if self._cancel_tasks():
            log.info("Engagement scheduler restarting — previous tasks cancelled")

        self.state = EngagementState(
            mode=EngagementMode.ACTIVE,
            last_human_activity=self._clock(),
            activity_watermark=self._wall_clock(),
        )

        self._cadence_task = asyncio.create_task(self._cadence_loop())
        if self._liveness_interval:
            self._liveness_task = asyncio.create_task(self._liveness_loop())

        log.info(
            "Engagement scheduler started "
            f"(interval={self._interval}s, inactivity={self._inactivity_threshold}s, "
            f"cooldown={self._cooldown}s, liveness={self._liveness_interval}s)"
        )

    async def stop(self) -> None:
        tasks = [t for t in (self._cadence_task, self._resume_task, self._liveness_task) if t]
        self._cancel_tasks()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self.state.mode = EngagementMode.IDLE
        self.state.paused_until = None
        log.info("Engagement scheduler stopped")

    def _cancel_tasks(self) -> bool:
        cancelled = False
        for attr in ("_cadence_task", "_resume_task", "_liveness_task"):
            task = getattr(self, attr)
            setattr(self, attr, None)
            if task and not task.done():
                task.cancel()
                cancelled = True
        return cancelled

    # ------------------------------------------------------------
    # Session
    # ------------------------------------------------------------

    async def resolve_session(self) -> Optional[str]:
        """
        Resolve and cache the active broadcast's liveChatId.
        """
        if self.state.live_chat_id:
            return self.state.live_chat_id

        try:
            live_chat_id = await self._livestream.get_active_live_chat_id()
        except ExternalApiError as e:
            log.warning(f"Live chat lookup failed: {e}")
            return None

        if not live_chat_id:
            log.info("No active live chat found yet")
            return None

        self.state.live_chat_id = live_chat_id
        self.state.page_token = None
        log.info(f"Live chat resolved: liveChatId={live_chat_id}")
        return live_chat_id

    # ------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------

    def record_human_activity(self) -> None:
        self.state.last_human_activity = self._clock()
        self.state.human_messages_seen += 1

    @property
    def idle_for(self) -> float:
        return self._clock() - self.state.last_human_activity

    async def poll_liveness_once(self) -> int:
        """
        Fetch one page of chat messages. Returns the number of fresh viewer
        messages.

        A poll without a page token replays recent chat history; messages
        published at or before the watermark were already accounted for and
        do not count as activity.
        """
        if not self._stream_state.is_streaming:
            return 0

        live_chat_id = await self.resolve_session()
        if not live_chat_id:
            return 0

        try:
            page = await self._chat.list_messages(live_chat_id, self.state.page_token)
        except ExternalApiError as e:
            log.warning(f"Chat liveness poll failed: {e}")
            return 0

        if page.next_page_token:
            self.state.page_token = page.next_page_token
        self.state.poll_interval_hint = page.polling_interval

        humans = [m for m in page.messages if m.is_human and self._is_fresh(m)]
        for message in humans:
            log.debug(f"[chat] {message.author_name}: {message.text}")
            self.record_human_activity()
            if message.published_at is not None:
                watermark = self.state.activity_watermark
                self.state.activity_watermark = (
                    message.published_at if watermark is None else max(watermark, message.published_at)
                )

        return len(humans)

    def _is_fresh(self, message) -> bool:
        watermark = self.state.activity_watermark
        if message.published_at is None or watermark is None:
            return True
        return message.published_at > watermark

    # ------------------------------------------------------------
    # Cadence
    # ------------------------------------------------------------

    async def tick(self) -> Optional[str]:
        """
        One cadence step. Returns the posted message, or None.
        """
        if not self._stream_state.is_streaming:
            log.debug("Cadence tick skipped — no active stream")
            return None

        if self.state.mode != EngagementMode.ACTIVE:
            return None

        idle_for = self.idle_for
        if idle_for > self._inactivity_threshold:
            log.info(
                f"No viewer messages for {idle_for:.0f}s — pausing engagement "
                f"for {self._cooldown}s"
            )
            self._enter_pause()
            return None

        live_chat_id = await self.resolve_session()
        if not live_chat_id:
            return None

        message = self._rng.choice(self._messages)
        try:
            await self._chat.insert_message(live_chat_id, message)
        except ExternalApiError as e:
            self.state.post_failures += 1
            # re-resolve next tick, the broadcast may have rolled over
            self.state.live_chat_id = None
            self.state.page_token = None
            log.warning(f"Engagement message not posted: {e}")
            return None

        self.state.messages_posted += 1
        log.info(f"Engagement message posted: {message}")
        return message

    def _enter_pause(self) -> None:
        self.state.mode = EngagementMode.PAUSED
        self.state.paused_until = self._clock() + self._cooldown

        cadence = self._cadence_task
        self._cadence_task = None
        if cadence and cadence is not asyncio.current_task() and not cadence.done():
            cadence.cancel()

        if self._resume_task and not self._resume_task.done():
            self._resume_task.cancel()
        self._resume_task = asyncio.create_task(self._resume_after_cooldown())

    def _resume(self) -> None:
        self.state.mode = EngagementMode.ACTIVE
        self.state.paused_until = None
        # fresh inactivity window from the moment we resume
        self.state.last_human_activity = self._clock()
        self._cadence_task = asyncio.create_task(self._cadence_loop())
        log.info("Engagement resumed after cooldown")

    async def _resume_after_cooldown(self) -> None:
        try:
            await asyncio.sleep(self._cooldown)
        except asyncio.CancelledError:
            log.debug("Engagement resume cancelled")
            raise

        self._resume_task = None
        self._resume()

    async def _cadence_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)
                try:
                    await self.tick()
                except Exception as e:
                    log.error(f"Engagement tick failed: {e}")

                if self.state.mode == EngagementMode.PAUSED:
                    return
        except asyncio.CancelledError:
            log.debug("Engagement cadence cancelled")
            raise

    async def _liveness_loop(self) -> None:
        try:
            while True:
                try:
                    await self.poll_liveness_once()
                except Exception as e:
                    log.error(f"Chat liveness poll error: {e}")
                # never poll faster than the server asks
                hint = self.state.poll_interval_hint or 0
                await asyncio.sleep(max(self._liveness_interval, hint))
        except asyncio.CancelledError:
            log.debug("Chat liveness polling cancelled")
            raise

    # ------------------------------------------------------------
    # Read-only Introspection
    # ------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self.state.mode != EngagementMode.IDLE

    @property
    def mode(self) -> EngagementMode:
        return self.state.mode

    @property
    def messages(self) -> List[str]:
        return list(self._messages)

    def snapshot(self) -> Dict[str, Any]:
        payload = self.state.snapshot()
        payload["idle_for"] = round(self.idle_for, 1) if self.running else None
        return payload
