"""Tests for ffmpeg command and filter helpers."""
import pytest

from clipsmith.utils import ffmpeg
from clipsmith.utils.ffmpeg import (
    FFmpegError,
    build_reframe_filter,
    build_subtitle_filter,
    run_tool,
    stderr_tail,
)


def test_reframe_filter_targets_fixed_resolutions():
    assert build_reframe_filter("9:16").startswith("scale=1080:1920:force_original_aspect_ratio=decrease")
    assert "pad=1080:1080" in build_reframe_filter("1:1")
    assert "pad=1920:1080" in build_reframe_filter("16:9")


def test_reframe_filter_rejects_unknown_ratio():
    with pytest.raises(ValueError):
        build_reframe_filter("4:3")


def test_subtitle_filter_by_extension(tmp_path):
    assert build_subtitle_filter(tmp_path / "c.ass").startswith("ass='")
    assert build_subtitle_filter(tmp_path / "c.srt").startswith("subtitles='")


def test_subtitle_filter_escapes_colons():
    assert build_subtitle_filter("C:/work/c.srt") == "subtitles='C\\:/work/c.srt'"


def test_stderr_tail_keeps_last_lines():
    text = "\n".join(f"line {i}" for i in range(20))
    assert stderr_tail(text, lines=2) == "line 18\nline 19"


@pytest.mark.asyncio
async def test_cut_clip_seeks_before_input(monkeypatch, tmp_path):
    captured = {}

    async def fake_run_tool(cmd, timeout=None):
        captured["cmd"] = cmd
        return b"", ""

    monkeypatch.setattr(ffmpeg, "run_tool", fake_run_tool)
    await ffmpeg.cut_clip(tmp_path / "in.mp4", tmp_path / "out.mp4", 12.5, 30.0, video_filter="scale=1:1")

    cmd = captured["cmd"]
    assert cmd.index("-ss") < cmd.index("-i")
    assert cmd[cmd.index("-ss") + 1] == "12.500"
    assert cmd[cmd.index("-t") + 1] == "30.000"
    assert cmd[cmd.index("-vf") + 1] == "scale=1:1"
    assert cmd[-1] == str(tmp_path / "out.mp4")


@pytest.mark.asyncio
async def test_run_tool_kills_on_timeout():
    with pytest.raises(FFmpegError, match="timed out"):
        await run_tool(["sleep", "5"], timeout=0.2)


@pytest.mark.asyncio
async def test_run_tool_reports_missing_binary():
    with pytest.raises(FFmpegError, match="not found"):
        await run_tool(["clipsmith-no-such-binary"])


@pytest.mark.asyncio
async def test_run_tool_reports_exit_code():
    with pytest.raises(FFmpegError) as exc:
        await run_tool(["sh", "-c", "echo broken >&2; exit 3"])
    assert "code 3" in str(exc.value)
    assert exc.value.stderr == "broken"
