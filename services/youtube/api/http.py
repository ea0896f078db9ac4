from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from runtime.version import user_agent
from services.youtube.api.errors import ExternalApiError
from shared.auth.credentials import CredentialStore

API_ROOT = "https://www.googleapis.com/youtube/v3"


class YouTubeApiBase:
    """
    Shared request plumbing for the YouTube Data API v3 clients.

    A fresh AsyncClient is opened per call; `transport` is injectable so
    tests can use httpx.MockTransport.
    """

    def __init__(
        self,
        *,
        credentials: CredentialStore,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if credentials is None:
            raise RuntimeError("YouTube credentials are required")
        self.credentials = credentials
        self._timeout = timeout
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        bearer = self.credentials.bearer()
        if not bearer:
            raise ExternalApiError("No valid YouTube access token", reason="unauthenticated")

        url = f"{API_ROOT}/{path.lstrip('/')}"

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers={"Authorization": bearer, "User-Agent": user_agent()},
                )
            except httpx.HTTPError as e:
                raise ExternalApiError(f"YouTube {method} {path} failed: {e}") from e

        if response.status_code >= 400:
            reason = _error_reason(response)
            raise ExternalApiError(
                f"YouTube {method} {path} returned {response.status_code}"
                + (f" ({reason})" if reason else ""),
                status_code=response.status_code,
                reason=reason,
            )

        if not response.content:
            return {}

        try:
            data = response.json()
        except ValueError as e:
            raise ExternalApiError(f"YouTube {method} {path} returned invalid JSON") from e

        return data if isinstance(data, dict) else {}


def _error_reason(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None

    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        return None

    errors = error.get("errors") or []
    if errors and isinstance(errors[0], dict) and errors[0].get("reason"):
        return errors[0]["reason"]
    return error.get("status") or error.get("message")
