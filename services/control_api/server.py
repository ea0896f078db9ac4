"""HTTP control surface for the stream runtime.

Routes:
- GET  /health
- GET  /status
- POST /stream/start   optional body {title, artist, showCta, ctaText, trackText}
- POST /stream/stop

The HTTP server runs on its own thread; every operation is submitted to the
runtime event loop so the supervisor and scheduler state is only ever
touched from the loop thread.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

from runtime.version import as_dict as version_info
from services.encoder.errors import (
    AlreadyRunning,
    EncoderLaunchFailed,
    InvalidConfig,
    NotRunning,
)
from shared.config.stream import ControlApiSettings, StreamSettings
from shared.logging.logger import get_logger

log = get_logger("services.control_api", runtime="control_api")

Response = Tuple[int, Dict[str, Any]]

_TEXT_FIELDS = {
    "title": "title",
    "artist": "artist",
    "ctaText": "cta_text",
    "trackText": "track_text",
}


class ControlApi:
    """
    Request handling, independent of the HTTP transport.

    Every method is a coroutine and must run on the runtime loop.
    """

    def __init__(
        self,
        *,
        supervisor,
        settings: StreamSettings,
        scheduler=None,
        credentials=None,
    ):
        self._supervisor = supervisor
        self._settings = settings
        self._scheduler = scheduler
        self._credentials = credentials

    async def health(self) -> Response:
        return HTTPStatus.OK, {
            "ok": True,
            "running": self._supervisor.running,
            "sourceFilesExist": self._settings.source_files_exist(),
            "authValid": bool(self._credentials and self._credentials.is_valid()),
        }

    async def status(self) -> Response:
        return HTTPStatus.OK, {
            "ok": True,
            "version": version_info(),
            "stream": self._supervisor.snapshot(),
            "engagement": self._scheduler.snapshot() if self._scheduler is not None else None,
        }

    async def start_stream(self, body: Optional[Dict[str, Any]] = None) -> Response:
        try:
            overrides = parse_start_overrides(body or {})
            config = self._settings.stream_config(**overrides)
            await self._supervisor.start(config)
        except AlreadyRunning:
            log.info("Start requested while already running — no-op")
            return HTTPStatus.OK, {"ok": True, "alreadyRunning": True}
        except InvalidConfig as e:
            log.warning(f"Start rejected: {e}")
            return HTTPStatus.BAD_REQUEST, _error(e.code, str(e))
        except EncoderLaunchFailed as e:
            log.error(f"Start failed: {e}")
            return HTTPStatus.INTERNAL_SERVER_ERROR, _error(e.code, str(e))

        if self._scheduler is not None:
            await self._scheduler.start()

        return HTTPStatus.OK, {"ok": True}

    async def stop_stream(self) -> Response:
        try:
            await self._supervisor.stop()
        except NotRunning as e:
            return HTTPStatus.BAD_REQUEST, _error(e.code, str(e))
        finally:
            if self._scheduler is not None and self._scheduler.running:
                await self._scheduler.stop()

        return HTTPStatus.OK, {"ok": True}


def _error(code: str, message: str) -> Dict[str, Any]:
    return {"ok": False, "error": code, "msg": message}


def parse_start_overrides(body: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map a /stream/start body onto StreamSettings.stream_config kwargs.
    """
    if not isinstance(body, dict):
        raise InvalidConfig("request body must be a JSON object")

    overrides: Dict[str, Any] = {}

    for key, kwarg in _TEXT_FIELDS.items():
        if key not in body or body[key] is None:
            continue
        value = body[key]
        if not isinstance(value, str):
            raise InvalidConfig(f"{key} must be a string")
        overrides[kwarg] = value

    if body.get("showCta") is not None:
        raw = body["showCta"]
        if isinstance(raw, bool):
            overrides["show_cta"] = raw
        elif isinstance(raw, str) and raw.strip().lower() in ("true", "false"):
            overrides["show_cta"] = raw.strip().lower() == "true"
        else:
            raise InvalidConfig("showCta must be a boolean")

    return overrides


class ControlApiServer:
    def __init__(
        self,
        api: ControlApi,
        config: ControlApiSettings,
        loop: asyncio.AbstractEventLoop,
        *,
        request_timeout: float = 30.0,
    ) -> None:
        self._api = api
        self._config = config
        self._loop = loop
        self._request_timeout = request_timeout
        self._thread: Optional[threading.Thread] = None
        self._server: Optional[ThreadingHTTPServer] = None

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        if not self._server:
            return None
        host, port = self._server.server_address[:2]
        return host, port

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return

        handler = self._build_handler()
        self._server = ThreadingHTTPServer(
            (self._config.host, int(self._config.port)),
            handler,
        )
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        log.info(
            "Control API running on %s:%s",
            self._config.host,
            self.address[1] if self.address else self._config.port,
        )

    def stop(self) -> None:
        if not self._server:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        log.info("Control API stopped")

    def _dispatch(self, coro) -> Response:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout=self._request_timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            log.error("Control API request timed out on the runtime loop")
            return HTTPStatus.GATEWAY_TIMEOUT, _error("Timeout", "runtime did not respond")
        except Exception as e:
            log.error(f"Control API request failed: {e}")
            return HTTPStatus.INTERNAL_SERVER_ERROR, _error("InternalError", str(e))

    def _build_handler(self):
        api = self._api
        dispatch = self._dispatch

        class Handler(BaseHTTPRequestHandler):
            def _send_json(self, status: int, payload: Dict[str, Any]) -> None:
                body = json.dumps(payload).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self._apply_cors()
                self.end_headers()
                self.wfile.write(body)

            def _apply_cors(self) -> None:
                self.send_header("Access-Control-Allow-Origin", "*")
                self.send_header("Access-Control-Allow-Headers", "Content-Type")
                self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")

            def do_OPTIONS(self) -> None:  # noqa: N802 - stdlib signature
                self.send_response(HTTPStatus.NO_CONTENT)
                self._apply_cors()
                self.end_headers()

            def do_GET(self) -> None:  # noqa: N802 - stdlib signature
                path = urlparse(self.path).path.rstrip("/")
                if path == "/health":
                    return self._send_json(*dispatch(api.health()))
                if path == "/status":
                    return self._send_json(*dispatch(api.status()))
                return self._send_json(HTTPStatus.NOT_FOUND, _error("NotFound", "Unknown endpoint"))

            def do_POST(self) -> None:  # noqa: N802 - stdlib signature
                path = urlparse(self.path).path.rstrip("/")
                if path == "/stream/start":
                    payload = self._read_json_body()
                    return self._send_json(*dispatch(api.start_stream(payload)))
                if path == "/stream/stop":
                    return self._send_json(*dispatch(api.stop_stream()))
                return self._send_json(HTTPStatus.NOT_FOUND, _error("NotFound", "Unknown endpoint"))

            def _read_json_body(self) -> Dict[str, Any]:
                length = int(self.headers.get("Content-Length", 0) or 0)
                if length <= 0:
                    return {}
                raw = self.rfile.read(length)
                try:
                    payload = json.loads(raw.decode("utf-8"))
                except (json.JSONDecodeError, UnicodeDecodeError):
                    return {}
                return payload if isinstance(payload, dict) else {}

            def log_message(self, format: str, *args: Any) -> None:
                log.info("%s - %s", self.address_string(), format % args)

        return Handler


__all__ = ["ControlApi", "ControlApiServer", "parse_start_overrides"]
