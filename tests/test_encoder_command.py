from __future__ import annotations

from pathlib import Path

import pytest

from services.encoder.command import EncoderCommandBuilder, render_concat_list
from services.encoder.errors import InvalidConfig
from services.encoder.models import AudioKind, AudioSource, ExitReason, StreamConfig


def _config(video: Path, audio: AudioSource, **kwargs) -> StreamConfig:
    return StreamConfig(
        video_path=str(video),
        audio=audio,
        rtmp_url="rtmp://a.rtmp.youtube.com/live2/key",
        track_text=kwargs.pop("track_text", "Calm — Anon"),
        cta_text=kwargs.pop("cta_text", "Subscribe"),
        **kwargs,
    )


def _value_after(argv, flag, start=0):
    idx = argv.index(flag, start)
    return argv[idx + 1]


def test_single_file_command(media, tmp_path):
    video, audio = media
    builder = EncoderCommandBuilder(work_dir=tmp_path / "work")
    argv = builder.build(_config(video, AudioSource.file(str(audio))))

    assert argv[-3:] == ["-f", "flv", "rtmp://a.rtmp.youtube.com/live2/key"]

    inputs = [argv[i + 1] for i, a in enumerate(argv) if a == "-i"]
    assert inputs == [str(video), str(audio)]

    # both inputs loop forever in real time
    assert argv.count("-stream_loop") == 2
    assert argv.count("-re") == 2

    graph = _value_after(argv, "-filter_complex")
    assert graph.startswith("[1:a]loudnorm")

    maps = [argv[i + 1] for i, a in enumerate(argv) if a == "-map"]
    assert maps == ["[vout]", "[aud]"]

    assert _value_after(argv, "-c:v") == "libx264"
    assert _value_after(argv, "-b:v") == "3000k"
    assert _value_after(argv, "-c:a") == "aac"
    assert _value_after(argv, "-ar") == "44100"


def test_playlist_command_uses_concat_demuxer(tmp_path):
    video = tmp_path / "v.mp4"
    video.write_bytes(b"x")
    tracks = []
    for name in ("b.mp3", "a.mp3"):
        p = tmp_path / name
        p.write_bytes(b"x")
        tracks.append(str(p))

    builder = EncoderCommandBuilder(work_dir=tmp_path / "work")
    argv = builder.build(_config(video, AudioSource.playlist(tracks)))

    list_file = builder.playlist_path
    assert list_file.exists()
    assert _value_after(argv, "-f") == "concat"
    assert str(list_file) in argv

    lines = list_file.read_text(encoding="utf-8").splitlines()
    # order preserved, not sorted
    assert lines[0].endswith("b.mp3'")
    assert lines[1].endswith("a.mp3'")


def test_concat_list_quotes_single_quotes(tmp_path):
    text = render_concat_list([str(tmp_path / "it's.mp3")])
    assert "it'\\''s.mp3" in text
    assert text.startswith("file '")


def test_validate_accepts_existing_files(media):
    video, audio = media
    _config(video, AudioSource.file(str(audio))).validate()


def test_validate_rejects_missing_video(media, tmp_path):
    _, audio = media
    with pytest.raises(InvalidConfig, match="video"):
        _config(tmp_path / "missing.mp4", AudioSource.file(str(audio))).validate()


def test_validate_rejects_missing_audio(media, tmp_path):
    video, _ = media
    with pytest.raises(InvalidConfig, match="audio"):
        _config(video, AudioSource.file(str(tmp_path / "nope.m4a"))).validate()


def test_validate_rejects_empty_playlist(media):
    video, _ = media
    with pytest.raises(InvalidConfig):
        _config(video, AudioSource.playlist([])).validate()


def test_validate_rejects_empty_destination(media):
    video, audio = media
    cfg = StreamConfig(video_path=str(video), audio=AudioSource.file(str(audio)), rtmp_url="  ")
    with pytest.raises(InvalidConfig, match="RTMP"):
        cfg.validate()


def test_validate_rejects_negative_duration(media):
    video, audio = media
    with pytest.raises(InvalidConfig, match="track_seconds"):
        _config(video, AudioSource.file(str(audio)), track_seconds=-1).validate()


def test_audio_source_helpers():
    assert AudioSource.file("a.m4a").kind == AudioKind.FILE
    playlist = AudioSource.playlist(["1.mp3", Path("2.mp3")])
    assert playlist.kind == AudioKind.PLAYLIST
    assert playlist.paths == ("1.mp3", "2.mp3")


def test_exit_reason_classification():
    assert ExitReason.from_returncode(0, stop_requested=False).expected
    assert ExitReason.from_returncode(None, stop_requested=False).expected
    assert ExitReason.from_returncode(255, stop_requested=True).expected
    crash = ExitReason.from_returncode(1, stop_requested=False)
    assert not crash.expected and crash.code == 1
