"""FFmpeg and ffprobe utilities."""
import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import List, Optional, Tuple

from clipsmith.config import settings

logger = logging.getLogger(__name__)

# Target frame size for each supported aspect ratio
ASPECT_RESOLUTIONS = {
    "9:16": (1080, 1920),
    "1:1": (1080, 1080),
    "16:9": (1920, 1080),
}


class FFmpegError(Exception):
    """FFmpeg related error."""

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


def check_ffmpeg_available() -> bool:
    """Check if ffmpeg is available."""
    return shutil.which(settings.ffmpeg_path) is not None


def check_ffprobe_available() -> bool:
    """Check if ffprobe is available."""
    return shutil.which(settings.ffprobe_path) is not None


def stderr_tail(stderr: str, lines: int = 12) -> str:
    """Last few lines of tool output, for error messages."""
    return "\n".join(stderr.strip().splitlines()[-lines:])


async def run_tool(cmd: List[str], timeout: Optional[float] = None) -> Tuple[bytes, str]:
    """
    Run an external tool and wait for it, killing it on timeout.

    Returns:
        Tuple of (stdout bytes, decoded stderr)

    Raises:
        FFmpegError: On non-zero exit, timeout, or missing binary
    """
    timeout = timeout or settings.subprocess_timeout_seconds
    logger.debug(f"Running: {' '.join(cmd)}")

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except FileNotFoundError as e:
        raise FFmpegError(f"{cmd[0]} not found") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise FFmpegError(f"{Path(cmd[0]).name} timed out after {timeout:.0f}s")

    stderr_text = stderr.decode("utf-8", errors="ignore")
    if proc.returncode != 0:
        raise FFmpegError(
            f"{Path(cmd[0]).name} exited with code {proc.returncode}",
            stderr=stderr_tail(stderr_text),
        )
    return stdout, stderr_text


async def get_media_duration(media_path: str | Path) -> float:
    """
    Get media duration in seconds using ffprobe.

    Raises:
        FFmpegError: If ffprobe fails or reports no duration
    """
    media_path = Path(media_path)
    if not media_path.exists():
        raise FFmpegError(f"Media file not found: {media_path}")

    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        str(media_path)
    ]
    stdout, _ = await run_tool(cmd)

    try:
        data = json.loads(stdout.decode())
        return float(data["format"]["duration"])
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise FFmpegError(f"Failed to parse ffprobe output: {e}")


async def extract_audio(video_path: str | Path, output_path: str | Path) -> Path:
    """Extract a mono 16 kHz mp3 track, small enough for speech-to-text."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-i", str(video_path),
        "-vn",
        "-acodec", "libmp3lame",
        "-ab", "64k",
        "-ar", "16000",
        "-ac", "1",
        str(output_path)
    ]
    await run_tool(cmd)
    return output_path


async def split_audio(
    audio_path: str | Path,
    output_dir: str | Path,
    chunk_seconds: float,
) -> List[Path]:
    """
    Split audio into fixed-length mp3 chunks.

    Returns:
        Chunk paths in timeline order; chunk i starts at i * chunk_seconds
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-i", str(audio_path),
        "-vn",
        "-f", "segment",
        "-segment_time", str(chunk_seconds),
        "-reset_timestamps", "1",
        "-acodec", "libmp3lame",
        "-ab", "64k",
        "-ar", "16000",
        "-ac", "1",
        str(output_dir / "chunk_%03d.mp3")
    ]
    await run_tool(cmd)
    return sorted(output_dir.glob("chunk_*.mp3"))


def build_reframe_filter(aspect_ratio: str) -> str:
    """Scale and letterbox to the fixed resolution for an aspect ratio."""
    if aspect_ratio not in ASPECT_RESOLUTIONS:
        raise ValueError(f"Unsupported aspect ratio: {aspect_ratio}")
    width, height = ASPECT_RESOLUTIONS[aspect_ratio]
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1"
    )


def build_subtitle_filter(subtitle_path: str | Path) -> str:
    """Burn-in filter for an .srt or .ass file."""
    # Filter arguments treat ':' and '\' specially
    escaped = str(subtitle_path).replace("\\", "/").replace(":", "\\:").replace("'", "\\'")
    if Path(subtitle_path).suffix.lower() == ".ass":
        return f"ass='{escaped}'"
    return f"subtitles='{escaped}'"


async def cut_clip(
    source_path: str | Path,
    output_path: str | Path,
    start_time: float,
    duration: float,
    video_filter: Optional[str] = None,
) -> Path:
    """
    Cut [start_time, start_time + duration) from the source and re-encode.

    Args:
        source_path: Path to source video
        output_path: Path for output file
        start_time: Start time in seconds
        duration: Clip length in seconds
        video_filter: Optional -vf chain (reframe, subtitle burn-in)

    Returns:
        Path to the finished clip
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-ss", f"{max(0.0, start_time):.3f}",
        "-i", str(source_path),
        "-t", f"{duration:.3f}",
    ]
    if video_filter:
        cmd += ["-vf", video_filter]
    cmd += [
        "-c:v", settings.export_video_codec,
        "-preset", settings.export_video_preset,
        "-crf", str(settings.export_video_crf),
        "-c:a", settings.export_audio_codec,
        "-b:a", settings.export_audio_bitrate,
        "-movflags", "+faststart",
        str(output_path)
    ]
    await run_tool(cmd)
    return output_path


async def generate_thumbnail(
    video_path: str | Path,
    output_path: str | Path,
    timestamp: float,
    width: int = None,
    height: int = None
) -> Path:
    """
    Generate a thumbnail from a video at a specific timestamp.

    Args:
        video_path: Path to video file
        output_path: Path to save thumbnail
        timestamp: Time in seconds to capture
        width: Optional thumbnail width
        height: Optional thumbnail height

    Returns:
        Path to generated thumbnail
    """
    output_path = Path(output_path)

    width = width or settings.thumbnail_width
    height = height or settings.thumbnail_height

    # Ensure output directory exists
    output_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = [
        settings.ffmpeg_path,
        "-y",  # Overwrite
        "-ss", f"{max(0.0, timestamp):.3f}",
        "-i", str(video_path),
        "-vframes", "1",
        "-vf", f"scale={width}:{height}:force_original_aspect_ratio=decrease,pad={width}:{height}:(ow-iw)/2:(oh-ih)/2",
        "-q:v", "2",
        str(output_path)
    ]
    await run_tool(cmd)
    return output_path
