"""Job service layer used by the HTTP routes."""
import logging
import shutil
import uuid
from pathlib import Path
from typing import Optional

import httpx

from clipsmith.acquisition.providers import VIDEO_SUFFIXES
from clipsmith.acquisition.sources import SourceRef, parse_source, source_from_job, upload_source
from clipsmith.config import settings
from clipsmith.errors import ValidationError
from clipsmith.models.job import Job, SourceKind
from clipsmith.pipeline.params import ClipParams

logger = logging.getLogger(__name__)

OEMBED_URL = "https://www.youtube.com/oembed"
OEMBED_TIMEOUT_SECONDS = 10.0
UPLOAD_CHUNK_BYTES = 1024 * 1024


def youtube_thumbnail(video_id: str) -> str:
    return f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"


class JobService:
    """Creates jobs and hands them to the background runner."""

    def __init__(self, orchestrator, runner, workspace, client_factory=None):
        self.orchestrator = orchestrator
        self.runner = runner
        self.workspace = workspace
        self.client_factory = client_factory or (
            lambda: httpx.AsyncClient(timeout=OEMBED_TIMEOUT_SECONDS)
        )

    async def fetch_video_info(self, source: SourceRef) -> dict:
        """
        Title and thumbnail for a source, best effort.

        YouTube sources are looked up via oEmbed; a failed lookup only costs
        the title.
        """
        if source.kind != SourceKind.YOUTUBE:
            name = Path(source.path).name if source.path else source.url
            return {"title": name, "thumbnail": None}

        info = {"title": None, "thumbnail": youtube_thumbnail(source.video_id)}
        try:
            async with self.client_factory() as client:
                response = await client.get(
                    OEMBED_URL, params={"url": source.fetch_url, "format": "json"}
                )
            response.raise_for_status()
            payload = response.json()
            info["title"] = payload.get("title")
            info["thumbnail"] = payload.get("thumbnail_url") or info["thumbnail"]
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"oEmbed lookup failed for {source.video_id}: {e}")
        return info

    async def submit_url(self, url: str, params: ClipParams) -> Job:
        """
        Create a job for a URL and start it.

        Raises:
            ValidationError: For unrecognized sources or bad options
        """
        source = parse_source(url)
        params.validate()
        info = await self.fetch_video_info(source)

        job_id = await self.orchestrator.create(
            source, params, title=info["title"], thumbnail_url=info["thumbnail"]
        )
        await self.runner.start_job(job_id)
        return await self.orchestrator.status(job_id)

    async def submit_upload(self, filename: str, upload, params: ClipParams) -> Job:
        """
        Store an uploaded video in a fresh workspace and start a job for it.

        Args:
            filename: Client-side filename, used for the extension only
            upload: Object with an async ``read(size)`` (FastAPI UploadFile)
            params: Clip options

        Raises:
            ValidationError: On a disallowed extension or an oversized file
        """
        suffix = Path(filename or "").suffix.lower()
        if suffix not in VIDEO_SUFFIXES:
            raise ValidationError(
                f"Unsupported file type '{suffix or filename}'. "
                f"Allowed: {', '.join(VIDEO_SUFFIXES)}"
            )
        params.validate()

        job_id = str(uuid.uuid4())
        workdir = self.workspace.allocate(job_id)
        dest = workdir / f"source{suffix}"

        written = 0
        with open(dest, "wb") as f:
            while True:
                chunk = await upload.read(UPLOAD_CHUNK_BYTES)
                if not chunk:
                    break
                written += len(chunk)
                if written > settings.max_upload_bytes:
                    f.close()
                    await self.workspace.cleanup(job_id)
                    raise ValidationError(
                        f"File too large (max {settings.max_upload_bytes // (1024 * 1024)} MB)"
                    )
                f.write(chunk)

        if written == 0:
            await self.workspace.cleanup(job_id)
            raise ValidationError("Uploaded file is empty")

        logger.info(f"Stored upload {filename} ({written / 1024 / 1024:.1f} MB) for job {job_id}")
        job_id = await self.orchestrator.create(
            upload_source(dest), params, job_id=job_id, title=Path(filename).stem
        )
        await self.runner.start_job(job_id)
        return await self.orchestrator.status(job_id)

    async def get_job(self, job_id: str) -> Job:
        return await self.orchestrator.status(job_id)

    async def process(self, job_id: str) -> Job:
        """Enqueue a job. A no-op for terminal or already running jobs."""
        job = await self.orchestrator.status(job_id)
        if not job.is_terminal and not self.runner.is_job_running(job_id):
            await self.runner.start_job(job_id)
        return job

    async def cancel(self, job_id: str) -> bool:
        return await self.runner.cancel_job(job_id)

    async def retry(self, job_id: str) -> Job:
        """
        Start a new job with the same source and options as an old one.

        Raises:
            ValidationError: If an uploaded source is no longer on disk
        """
        old = await self.orchestrator.status(job_id)
        params = ClipParams.from_job(old)

        new_id = str(uuid.uuid4())
        source = source_from_job(old)
        if source.kind == SourceKind.UPLOAD:
            old_path: Optional[Path] = source.path
            if old_path is None or not old_path.exists():
                raise ValidationError("The uploaded file is gone; upload it again")
            dest = self.workspace.allocate(new_id) / old_path.name
            shutil.copyfile(old_path, dest)
            source = upload_source(dest)

        new_id = await self.orchestrator.create(
            source,
            params,
            job_id=new_id,
            title=old.title,
            thumbnail_url=old.thumbnail_url,
        )
        logger.info(f"Retrying job {job_id} as {new_id}")
        await self.runner.start_job(new_id)
        return await self.orchestrator.status(new_id)
