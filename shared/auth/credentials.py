"""
Chat API credential cell.

Token acquisition, refresh and persistence live outside this runtime. The
auth collaborator pushes every new access token into `CredentialStore.update`
and the chat clients read the current value per request. Nothing here polls.
"""

from __future__ import annotations

import time
from typing import Callable, List, Optional

from shared.logging.logger import get_logger

log = get_logger("auth.credentials")

TokenListener = Callable[[str, Optional[float]], None]

# treat a token as expired slightly early to avoid in-flight 401s
EXPIRY_SKEW_SECONDS = 30.0


class CredentialStore:
    def __init__(
        self,
        access_token: Optional[str] = None,
        expires_at: Optional[float] = None,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self._access_token = access_token or None
        self._expires_at = expires_at
        self._clock = clock
        self._listeners: List[TokenListener] = []

    # ------------------------------------------------------------
    # Observer entry-point (called by the auth collaborator)
    # ------------------------------------------------------------

    def update(self, access_token: str, expires_at: Optional[float] = None) -> None:
        self._access_token = access_token or None
        self._expires_at = expires_at
        log.info(
            "Access token updated "
            f"(expires_at={expires_at if expires_at is not None else 'unknown'})"
        )

        for listener in list(self._listeners):
            try:
                listener(access_token, expires_at)
            except Exception as e:
                log.warning(f"Credential listener failed: {e}")

    def clear(self) -> None:
        self._access_token = None
        self._expires_at = None
        log.info("Access token cleared")

    def subscribe(self, listener: TokenListener) -> Callable[[], None]:
        """
        Register a listener; returns an unsubscribe callable.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------

    def is_valid(self) -> bool:
        if not self._access_token:
            return False
        if self._expires_at is None:
            return True
        return self._clock() < self._expires_at - EXPIRY_SKEW_SECONDS

    def bearer(self) -> Optional[str]:
        if not self.is_valid():
            return None
        return f"Bearer {self._access_token}"
