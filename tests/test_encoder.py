from pathlib import Path

import pytest

import ffmpeg_path
from config import parse_resolution
from encoder import build_ffmpeg_command, encode_frames_to_mp4
from errors import EncodingError


def test_command_uses_crf_for_quality():
    cmd = build_ffmpeg_command(Path("frames"), Path("out.mp4"), fps=24, quality="ultra", ffmpeg="/usr/bin/ffmpeg")
    assert cmd[0] == "/usr/bin/ffmpeg"
    assert cmd[cmd.index("-framerate") + 1] == "24"
    assert cmd[cmd.index("-crf") + 1] == "17"
    assert cmd[cmd.index("-i") + 1] == str(Path("frames") / "frame_%06d.png")
    assert cmd[-1] == "out.mp4"


def test_command_pads_to_even_dimensions_and_yuv420p():
    cmd = build_ffmpeg_command(Path("f"), Path("o.mp4"), fps=30)
    assert "pad=ceil(iw/2)*2:ceil(ih/2)*2" in cmd
    assert cmd[cmd.index("-pix_fmt") + 1] == "yuv420p"
    assert cmd[cmd.index("-crf") + 1] == "20"


def test_unknown_quality_is_rejected():
    with pytest.raises(ValueError):
        build_ffmpeg_command(Path("f"), Path("o.mp4"), fps=30, quality="extreme")


def test_encoding_without_frames_fails(tmp_path):
    with pytest.raises(EncodingError):
        encode_frames_to_mp4(tmp_path, tmp_path / "out.mp4", fps=30)


@pytest.mark.parametrize(
    "value,expected",
    [("720p", (1280, 720)), ("4K", (3840, 2160)), ("1920x1080", (1920, 1080)), (" 640x360 ", (640, 360))],
)
def test_parse_resolution(value, expected):
    assert parse_resolution(value) == expected


@pytest.mark.parametrize("value", ["big", "0x100", "1x2x3", "x720"])
def test_parse_resolution_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_resolution(value)


def test_ffmpeg_env_override_wins(monkeypatch):
    monkeypatch.setenv("KEYFRAMER_FFMPEG", "/opt/ffmpeg/bin/ffmpeg")
    assert ffmpeg_path.get_ffmpeg() == "/opt/ffmpeg/bin/ffmpeg"


def test_missing_ffmpeg_is_an_encoding_error(monkeypatch):
    def no_bundle():
        raise RuntimeError("no ffmpeg exe")

    monkeypatch.delenv("KEYFRAMER_FFMPEG", raising=False)
    monkeypatch.setattr(ffmpeg_path.shutil, "which", lambda name: None)
    monkeypatch.setattr(ffmpeg_path.imageio_ffmpeg, "get_ffmpeg_exe", no_bundle)
    with pytest.raises(EncodingError):
        ffmpeg_path.get_ffmpeg()
