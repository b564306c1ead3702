"""Render selected highlight windows into finished clips.

Each clip is cut from the acquired source video, reframed to the requested
aspect ratio, optionally captioned, and thumbnailed. The finished clips are
then bundled into a zip archive.
"""
import asyncio
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from clipsmith.config import settings
from clipsmith.errors import RenderError, StorageError
from clipsmith.pipeline.captions import build_subtitles, clip_local_segments
from clipsmith.pipeline.highlights import SelectedClip
from clipsmith.pipeline.params import ClipParams
from clipsmith.pipeline.transcript import TranscriptSegment
from clipsmith.utils.ffmpeg import (
    FFmpegError,
    build_reframe_filter,
    build_subtitle_filter,
    cut_clip,
    generate_thumbnail,
)

logger = logging.getLogger(__name__)

ARCHIVE_FILENAME = "clips.zip"


@dataclass
class RenderResult:
    clips: List[SelectedClip]
    archive_filename: str


def _default_locator(filename: str) -> str:
    return filename


class RenderPipeline:
    """Cuts, reframes and captions every selected clip of a job."""

    def __init__(self, thumbnail_format: str = None):
        self.thumbnail_format = thumbnail_format or settings.thumbnail_format

    async def render(
        self,
        video_path: Path,
        segments: List[TranscriptSegment],
        clips: List[SelectedClip],
        params: ClipParams,
        workdir: Path,
        offset: float = 0.0,
        progress_callback=None,
        locator: Callable[[str], str] = _default_locator,
    ) -> RenderResult:
        """
        Render all clips or none.

        Args:
            video_path: Acquired source video
            segments: Full-job transcript on the source timeline
            clips: Selected windows on the source timeline
            params: Job clip options
            workdir: Job workspace; outputs are written here
            offset: Source time at which ``video_path`` starts
            progress_callback: Async callable(done, total)
            locator: Maps an artifact filename to its retrieval URL

        Raises:
            RenderError: If any clip fails to render
        """
        workdir = Path(workdir)
        width, height = params.resolution
        rendered = []

        for done, clip in enumerate(clips):
            output_path = workdir / clip.filename
            video_filter = build_reframe_filter(params.aspect_ratio)

            subtitle_path = None
            if params.add_captions:
                subtitle_path = self._write_subtitles(
                    workdir, clip, segments, params.caption_style, width, height
                )
                if subtitle_path is not None:
                    video_filter = f"{video_filter},{build_subtitle_filter(subtitle_path)}"

            logger.info(
                f"Rendering clip {clip.id}/{len(clips)}: "
                f"{clip.start:.1f}s-{clip.end:.1f}s -> {clip.filename}"
            )
            try:
                await cut_clip(
                    video_path,
                    output_path,
                    start_time=clip.start - offset,
                    duration=clip.duration,
                    video_filter=video_filter,
                )
            except FFmpegError as e:
                raise RenderError(f"Failed to render clip {clip.id}", e.stderr or str(e)) from e
            finally:
                if subtitle_path is not None:
                    subtitle_path.unlink(missing_ok=True)

            thumbnail = await self._thumbnail(output_path, clip)
            rendered.append(clip.with_locator(
                url=locator(clip.filename),
                thumbnail=locator(thumbnail.name) if thumbnail else None,
            ))

            if progress_callback:
                await progress_callback(done + 1, len(clips))

        archive = await asyncio.to_thread(self._build_archive, workdir, rendered)
        return RenderResult(clips=rendered, archive_filename=archive.name)

    def _write_subtitles(
        self,
        workdir: Path,
        clip: SelectedClip,
        segments: List[TranscriptSegment],
        style: str,
        width: int,
        height: int,
    ) -> Optional[Path]:
        local = clip_local_segments(segments, clip.start, clip.end)
        if not local:
            return None

        ext, text = build_subtitles(local, style, width, height)
        path = workdir / f"captions_{clip.id}.{ext}"
        try:
            path.write_text(text, encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Could not write captions for clip {clip.id}: {e}") from e
        return path

    async def _thumbnail(self, clip_path: Path, clip: SelectedClip) -> Optional[Path]:
        """Midpoint frame of the rendered clip. Failures are not fatal."""
        thumb_path = clip_path.with_name(f"{clip_path.stem}.{self.thumbnail_format}")
        try:
            return await generate_thumbnail(clip_path, thumb_path, clip.duration / 2)
        except FFmpegError as e:
            logger.warning(f"Thumbnail failed for clip {clip.id}: {e} {e.stderr}")
            return None

    def _build_archive(self, workdir: Path, clips: List[SelectedClip]) -> Path:
        archive_path = workdir / ARCHIVE_FILENAME
        try:
            with zipfile.ZipFile(archive_path, "w", zipfile.ZIP_STORED) as zf:
                for clip in clips:
                    zf.write(workdir / clip.filename, arcname=clip.filename)
        except OSError as e:
            raise StorageError(f"Could not build clip archive: {e}") from e
        logger.info(f"Archived {len(clips)} clips into {archive_path.name}")
        return archive_path
