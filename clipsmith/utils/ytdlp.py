"""yt-dlp utilities for YouTube media download."""
import asyncio
import logging
import re
import shutil
from pathlib import Path
from typing import List, Optional, Tuple

from clipsmith.config import settings

logger = logging.getLogger(__name__)

MEDIA_EXTENSIONS = (".mp4", ".mkv", ".webm", ".mov", ".m4a", ".mp3", ".opus", ".ogg")


class YtdlpError(Exception):
    """yt-dlp related error."""
    pass


def check_ytdlp_available() -> bool:
    """Check if yt-dlp is available."""
    return shutil.which(settings.ytdlp_path) is not None


def _format_section(section: Tuple[float, float]) -> str:
    start, end = section
    return f"*{start:.2f}-{end:.2f}"


def build_download_command(
    url: str,
    output_template: str,
    audio_only: bool = False,
    section: Optional[Tuple[float, float]] = None,
    cookies_file: Optional[Path] = None,
) -> List[str]:
    """Build the yt-dlp argument list for one download."""
    if audio_only:
        fmt = "bestaudio[ext=m4a]/bestaudio/best"
    else:
        # bv* requires a video stream, won't select audio-only
        fmt = "bv*[ext=mp4]+ba[ext=m4a]/bv*[ext=mp4]+ba/bv*+ba/b"

    cmd = [
        settings.ytdlp_path,
        "-f", fmt,
        "-o", output_template,
        "--no-playlist",
        "--newline",
        "--force-overwrites",
        "--user-agent", settings.http_user_agent,
    ]
    if not audio_only:
        cmd += ["--merge-output-format", "mp4"]
    if section is not None:
        cmd += ["--download-sections", _format_section(section), "--force-keyframes-at-cuts"]
    if cookies_file is not None:
        cmd += ["--cookies", str(cookies_file)]
    cmd.append(url)
    return cmd


def _find_output(output_dir: Path, filename: str, output_lines: List[str]) -> Optional[Path]:
    """Locate the finished file from yt-dlp's log or the output directory."""
    for line in reversed(output_lines):
        merge_match = re.search(r'Merging formats into "(.+)"', line)
        if merge_match and Path(merge_match.group(1)).exists():
            return Path(merge_match.group(1))
        dest_match = re.search(r"Destination:\s+(.+)", line)
        if dest_match and Path(dest_match.group(1)).exists():
            return Path(dest_match.group(1))

    for file in sorted(output_dir.glob(f"{filename}.*")):
        if file.suffix.lower() in MEDIA_EXTENSIONS and file.stat().st_size > 0:
            return file
    return None


async def download_media(
    url: str,
    output_dir: Path,
    filename: str = "source",
    audio_only: bool = False,
    section: Optional[Tuple[float, float]] = None,
    cookies_file: Optional[Path] = None,
    timeout: Optional[float] = None,
) -> Path:
    """
    Download media with yt-dlp.

    Args:
        url: Source URL
        output_dir: Directory to save the file
        filename: Base filename without extension
        audio_only: Fetch only the best audio stream
        section: Optional (start, end) seconds to download instead of the whole video
        cookies_file: Optional Netscape cookies file for authenticated access
        timeout: Seconds before the download is killed

    Returns:
        Path to downloaded file

    Raises:
        YtdlpError: On non-zero exit, timeout, or missing output
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    timeout = timeout or settings.subprocess_timeout_seconds

    # Clean up any partial downloads first
    for partial in list(output_dir.glob("*.part")) + list(output_dir.glob("*.ytdl")):
        partial.unlink(missing_ok=True)

    output_template = str(output_dir / f"{filename}.%(ext)s")
    cmd = build_download_command(url, output_template, audio_only, section, cookies_file)
    logger.info(f"Running yt-dlp command: {' '.join(cmd)}")

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT
        )
    except FileNotFoundError as e:
        raise YtdlpError(f"{settings.ytdlp_path} not found") from e

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise YtdlpError(f"yt-dlp timed out after {timeout:.0f}s")

    output_lines = stdout.decode("utf-8", errors="ignore").splitlines()

    if proc.returncode != 0:
        tail = "\n".join(output_lines[-10:])
        logger.error(f"yt-dlp failed with output:\n{tail}")
        raise YtdlpError(f"yt-dlp exited with code {proc.returncode}: {tail}")

    final_path = _find_output(output_dir, filename, output_lines)
    if final_path is None:
        logger.error(f"No output file found in {output_dir}")
        raise YtdlpError("Download completed but output file not found")

    return final_path
