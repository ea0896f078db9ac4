from __future__ import annotations

import asyncio
import json
import threading
import urllib.error
import urllib.request

import pytest

from services.control_api.server import ControlApi, ControlApiServer, parse_start_overrides
from services.encoder.command import EncoderCommandBuilder
from services.encoder.errors import InvalidConfig
from services.encoder.supervisor import StreamSupervisor
from shared.auth.credentials import CredentialStore
from shared.config.stream import ControlApiSettings, OverlaySettings, StreamSettings
from shared.runtime.stream_state import StreamState


class FakeScheduler:
    def __init__(self):
        self.starts = 0
        self.stops = 0
        self.running = False

    async def start(self):
        self.starts += 1
        self.running = True

    async def stop(self):
        self.stops += 1
        self.running = False

    def snapshot(self):
        return {"mode": "active" if self.running else "idle"}


def _settings(media, **overrides) -> StreamSettings:
    video, audio = media
    values = dict(
        rtmp_url="rtmp://ingest/live/key",
        video_path=str(video),
        audio_path=str(audio),
        overlay=OverlaySettings(live_title="Lofi 24/7", channel_name="Chill"),
    )
    values.update(overrides)
    return StreamSettings(**values)


def _api(media, spawner, tmp_path, **overrides):
    state = StreamState()
    supervisor = StreamSupervisor(
        state,
        command_builder=EncoderCommandBuilder(work_dir=tmp_path / "work"),
        spawn=spawner,
        restart_delay=0.01,
    )
    scheduler = FakeScheduler()
    api = ControlApi(
        supervisor=supervisor,
        settings=_settings(media, **overrides),
        scheduler=scheduler,
        credentials=CredentialStore("tok"),
    )
    return api, supervisor, scheduler


def test_health_reports_state(media, spawner, tmp_path):
    async def scenario():
        api, supervisor, _ = _api(media, spawner, tmp_path)

        status, body = await api.health()
        assert status == 200
        assert body == {"ok": True, "running": False, "sourceFilesExist": True, "authValid": True}

        await api.start_stream()
        _, body = await api.health()
        assert body["running"] is True

        await supervisor.shutdown(timeout=1)

    asyncio.run(scenario())


def test_status_reports_supervisor_and_scheduler(media, spawner, tmp_path):
    async def scenario():
        api, supervisor, _ = _api(media, spawner, tmp_path)
        await api.start_stream()

        status, body = await api.status()
        assert status == 200
        assert body["version"]["version"].startswith("v")
        assert body["stream"]["phase"] == "running"
        assert body["stream"]["replay_pending"] is False
        assert body["engagement"] == {"mode": "active"}

        await supervisor.shutdown(timeout=1)

    asyncio.run(scenario())


def test_health_flags_missing_media(media, spawner, tmp_path):
    async def scenario():
        api, _, _ = _api(media, spawner, tmp_path, video_path=str(tmp_path / "gone.mp4"))
        _, body = await api.health()
        assert body["sourceFilesExist"] is False

    asyncio.run(scenario())


def test_start_builds_expected_graph(media, spawner, tmp_path):
    async def scenario():
        api, supervisor, scheduler = _api(media, spawner, tmp_path)

        status, body = await api.start_stream({"title": "Calm", "artist": "Anon"})
        assert status == 200 and body == {"ok": True}
        assert scheduler.starts == 1

        argv = spawner.calls[0]
        graph = argv[argv.index("-filter_complex") + 1]
        assert "text='Calm — Anon'" in graph
        assert "enable='between(t,0,6)'" in graph
        assert "enable='between(t,0,5)'" in graph
        assert "Live\\: Lofi 24/7 • Chill — Subscribe!" in graph

        await supervisor.shutdown(timeout=1)

    asyncio.run(scenario())


def test_start_is_idempotent(media, spawner, tmp_path):
    async def scenario():
        api, supervisor, scheduler = _api(media, spawner, tmp_path)

        await api.start_stream()
        status, body = await api.start_stream()

        assert status == 200
        assert body == {"ok": True, "alreadyRunning": True}
        assert spawner.count == 1
        assert scheduler.starts == 1

        await supervisor.shutdown(timeout=1)

    asyncio.run(scenario())


def test_start_with_missing_media_is_400(media, spawner, tmp_path):
    async def scenario():
        api, _, scheduler = _api(media, spawner, tmp_path, audio_path=str(tmp_path / "gone.m4a"))

        status, body = await api.start_stream()
        assert status == 400
        assert body["ok"] is False
        assert body["error"] == "InvalidConfig"
        assert "audio" in body["msg"]
        assert spawner.count == 0
        assert scheduler.starts == 0

    asyncio.run(scenario())


def test_start_launch_failure_is_500(media, spawner_factory, tmp_path):
    async def scenario():
        api, _, _ = _api(media, spawner_factory(error=FileNotFoundError("ffmpeg")), tmp_path)
        status, body = await api.start_stream()
        assert status == 500
        assert body["error"] == "EncoderLaunchFailed"

    asyncio.run(scenario())


def test_cta_can_be_disabled_per_request(media, spawner, tmp_path):
    async def scenario():
        api, supervisor, _ = _api(media, spawner, tmp_path)
        await api.start_stream({"showCta": "false", "ctaText": "hidden"})

        argv = spawner.calls[0]
        graph = argv[argv.index("-filter_complex") + 1]
        assert graph.endswith("[vtmp]copy[vout]")
        assert "hidden" not in graph

        await supervisor.shutdown(timeout=1)

    asyncio.run(scenario())


def test_stop_and_stop_when_idle(media, spawner, tmp_path):
    async def scenario():
        api, _, scheduler = _api(media, spawner, tmp_path)
        await api.start_stream()

        status, body = await api.stop_stream()
        assert status == 200 and body == {"ok": True}
        assert spawner.processes[0].signals
        assert scheduler.stops == 1

        status, body = await api.stop_stream()
        assert status == 400
        assert body["error"] == "NotRunning"
        assert scheduler.stops == 1

    asyncio.run(scenario())


def test_parse_start_overrides():
    assert parse_start_overrides({}) == {}
    assert parse_start_overrides({"title": "A", "showCta": True, "trackText": "T"}) == {
        "title": "A",
        "show_cta": True,
        "track_text": "T",
    }
    assert parse_start_overrides({"showCta": " TRUE "}) == {"show_cta": True}

    with pytest.raises(InvalidConfig):
        parse_start_overrides({"title": 5})
    with pytest.raises(InvalidConfig):
        parse_start_overrides({"showCta": "maybe"})


def test_http_routes(media, spawner, tmp_path):
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()

    api, supervisor, _ = _api(media, spawner, tmp_path)
    server = ControlApiServer(api, ControlApiSettings(host="127.0.0.1", port=0), loop, request_timeout=5)
    server.start()
    base = f"http://127.0.0.1:{server.address[1]}"

    def call(method, path, payload=None):
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        request = urllib.request.Request(base + path, data=data, method=method)
        if data is not None:
            request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=5) as response:
                return response.status, json.loads(response.read())
        except urllib.error.HTTPError as e:
            return e.code, json.loads(e.read())

    try:
        assert call("GET", "/health")[1]["running"] is False
        assert call("GET", "/status")[1]["stream"]["phase"] == "idle"

        status, body = call("POST", "/stream/start", {"title": "Calm", "artist": "Anon"})
        assert (status, body) == (200, {"ok": True})

        status, body = call("POST", "/stream/start")
        assert body.get("alreadyRunning") is True

        assert call("POST", "/stream/stop")[0] == 200
        assert call("POST", "/stream/stop")[0] == 400
        assert call("GET", "/nope")[0] == 404
    finally:
        server.stop()
        asyncio.run_coroutine_threadsafe(supervisor.shutdown(timeout=1), loop).result(timeout=5)
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout=5)
        loop.close()
