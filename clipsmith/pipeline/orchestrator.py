"""Job orchestrator.

Drives a job through its stages, persisting status, step and progress after
every transition so a separate reader always sees where the job is:

    queued -> downloading_audio -> transcribing -> finding_clips
           -> downloading_video -> cutting_clips -> done

Every stage failure ends the job in ``failed``/``error``; nothing is retried
automatically.
"""
import asyncio
import json
import logging
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Set

from sqlalchemy import select

from clipsmith.acquisition.sources import SourceRef, source_from_job
from clipsmith.errors import ClipsmithError, JobCancelled, JobNotFound, StorageError
from clipsmith.models.job import Job, JobStatus, JobStep, SourceKind
from clipsmith.pipeline.highlights import SelectedClip, select_highlights
from clipsmith.pipeline.params import ClipParams
from clipsmith.pipeline.transcript import segments_from_json, segments_to_json
from clipsmith.utils.ffmpeg import FFmpegError, get_media_duration

logger = logging.getLogger(__name__)

# Progress reported when each step starts
PROGRESS = {
    JobStep.QUEUED: 5.0,
    JobStep.DOWNLOADING_AUDIO: 10.0,
    JobStep.TRANSCRIBING: 30.0,
    JobStep.FINDING_CLIPS: 50.0,
    JobStep.DOWNLOADING_VIDEO: 60.0,
    JobStep.CUTTING_CLIPS: 70.0,
    JobStep.DONE: 100.0,
}
RENDER_PROGRESS_END = 95.0

NEXT_STEP = {
    JobStep.DOWNLOADING_AUDIO: JobStep.TRANSCRIBING,
    JobStep.TRANSCRIBING: JobStep.FINDING_CLIPS,
    JobStep.FINDING_CLIPS: JobStep.DOWNLOADING_VIDEO,
    JobStep.DOWNLOADING_VIDEO: JobStep.CUTTING_CLIPS,
    JobStep.CUTTING_CLIPS: JobStep.DONE,
}

STEP_MESSAGES = {
    JobStep.DOWNLOADING_AUDIO: "Downloading audio",
    JobStep.TRANSCRIBING: "Transcribing",
    JobStep.FINDING_CLIPS: "Finding highlights",
    JobStep.DOWNLOADING_VIDEO: "Downloading video",
    JobStep.CUTTING_CLIPS: "Cutting clips",
}


def artifact_url(job_id: str, filename: str) -> str:
    return f"/api/files/{job_id}/{filename}"


class Orchestrator:
    """State machine for clip jobs."""

    def __init__(
        self,
        session_maker,
        acquisition,
        transcriber,
        renderer,
        workspace,
        step_fraction: float = 0.5,
    ):
        self.session_maker = session_maker
        self.acquisition = acquisition
        self.transcriber = transcriber
        self.renderer = renderer
        self.workspace = workspace
        self.step_fraction = step_fraction

        self._locks: Dict[str, asyncio.Lock] = {}
        self._cancel_requested: Set[str] = set()
        self._registry_lock = threading.Lock()

        self._stages = {
            JobStep.DOWNLOADING_AUDIO: self._download_audio,
            JobStep.TRANSCRIBING: self._transcribe,
            JobStep.FINDING_CLIPS: self._find_clips,
            JobStep.DOWNLOADING_VIDEO: self._download_video,
            JobStep.CUTTING_CLIPS: self._cut_clips,
        }

    # =========================================================================
    # Public API
    # =========================================================================

    async def create(
        self,
        source: SourceRef,
        params: ClipParams,
        job_id: Optional[str] = None,
        title: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
    ) -> str:
        """Insert a queued job and return its id."""
        params.validate()
        job = Job(
            id=job_id or str(uuid.uuid4()),
            source_kind=source.kind,
            source_url=source.url,
            video_id=source.video_id,
            source_path=str(source.path) if source.path else None,
            title=title,
            thumbnail_url=thumbnail_url,
            status=JobStatus.QUEUED,
            current_step=JobStep.QUEUED,
            progress=PROGRESS[JobStep.QUEUED],
            clip_duration=params.clip_duration,
            max_clips=params.max_clips,
            aspect_ratio=params.aspect_ratio,
            add_captions=params.add_captions,
            caption_style=params.caption_style,
        )
        async with self.session_maker() as session:
            session.add(job)
            await session.commit()

        logger.info(f"Created job {job.id} for {source.describe()}")
        return job.id

    async def status(self, job_id: str) -> Job:
        """
        Current persisted state of a job.

        Raises:
            JobNotFound: For unknown ids
        """
        async with self.session_maker() as session:
            job = await session.get(Job, job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        return job

    async def advance(self, job_id: str) -> Job:
        """
        Run the job's next stage.

        Terminal jobs are returned untouched. Stage failures are recorded on
        the job, never raised.
        """
        async with self._lock_for(job_id):
            job = await self.status(job_id)
            if job.is_terminal:
                return job

            step = job.current_step
            if step == JobStep.QUEUED:
                step = JobStep.DOWNLOADING_AUDIO

            job = await self._transition(
                job_id,
                status=JobStatus.PROCESSING,
                current_step=step,
                progress=PROGRESS[step],
                started_at=job.started_at or datetime.utcnow(),
            )
            logger.info(f"Job {job_id}: {STEP_MESSAGES[step]}")

            try:
                updates = await self._stages[step](job)
            except Exception as e:
                return await self._fail(job_id, e)

            next_step = NEXT_STEP[step]
            if next_step == JobStep.DONE:
                job = await self._transition(
                    job_id,
                    status=JobStatus.COMPLETED,
                    current_step=JobStep.DONE,
                    progress=PROGRESS[JobStep.DONE],
                    completed_at=datetime.utcnow(),
                    **updates,
                )
                self.workspace.schedule_cleanup(job_id)
                logger.info(f"Job {job_id} completed")
                return job

            return await self._transition(
                job_id,
                current_step=next_step,
                progress=PROGRESS[next_step],
                **updates,
            )

    async def run(self, job_id: str) -> Job:
        """Advance the job until it is terminal, honouring cancellation between stages."""
        try:
            while True:
                if self._is_cancel_requested(job_id):
                    return await self._fail(job_id, JobCancelled())
                job = await self.advance(job_id)
                if job.is_terminal:
                    return job
        finally:
            with self._registry_lock:
                self._cancel_requested.discard(job_id)
                self._locks.pop(job_id, None)

    async def cancel(self, job_id: str) -> bool:
        """
        Ask a job to stop at the next stage boundary.

        Returns:
            False if the job is already terminal
        """
        job = await self.status(job_id)
        if job.is_terminal:
            return False
        with self._registry_lock:
            self._cancel_requested.add(job_id)
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    async def resume_incomplete(self) -> List[str]:
        """Ids of jobs a previous process left queued or processing."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(Job.id)
                .where(Job.status.in_([JobStatus.QUEUED, JobStatus.PROCESSING]))
                .order_by(Job.created_at)
            )
            return list(result.scalars().all())

    # =========================================================================
    # Stages
    # =========================================================================

    async def _download_audio(self, job: Job) -> dict:
        workdir = self.workspace.allocate(job.id)
        audio = await self.acquisition.acquire_audio(source_from_job(job), workdir)
        logger.info(f"Job {job.id}: audio via {audio.provider} ({len(audio.data)} bytes)")
        return {}

    async def _transcribe(self, job: Job) -> dict:
        workdir = self.workspace.allocate(job.id)
        audio_files = sorted(workdir.glob("audio.*"))
        if not audio_files:
            raise StorageError("Downloaded audio is missing from the workspace")
        audio_path = audio_files[0]

        try:
            duration = await get_media_duration(audio_path)
        except FFmpegError:
            duration = None

        segments = await self.transcriber.transcribe(
            audio_path.read_bytes(), audio_path.name, workdir, duration_hint=duration
        )
        logger.info(f"Job {job.id}: {len(segments)} transcript segments")
        return {"transcript": json.dumps(segments_to_json(segments))}

    async def _find_clips(self, job: Job) -> dict:
        segments = segments_from_json(job.transcript_data)
        clips = select_highlights(
            segments,
            target_duration=job.clip_duration,
            max_clips=job.max_clips,
            step_fraction=self.step_fraction,
        )
        return {"clips": json.dumps([c.to_dict() for c in clips])}

    async def _download_video(self, job: Job) -> dict:
        workdir = self.workspace.allocate(job.id)
        clips = [SelectedClip.from_dict(c) for c in job.clips_data or []]
        section = None
        if clips:
            section = (min(c.start for c in clips), max(c.end for c in clips))

        video = await self.acquisition.acquire_video(source_from_job(job), workdir, section)
        logger.info(f"Job {job.id}: video via {video.provider}")
        return {"video_path": video.path.name, "video_offset": video.offset}

    async def _cut_clips(self, job: Job) -> dict:
        workdir = self.workspace.allocate(job.id)
        if not job.video_path or not (workdir / job.video_path).exists():
            raise StorageError("Downloaded video is missing from the workspace")

        span = RENDER_PROGRESS_END - PROGRESS[JobStep.CUTTING_CLIPS]

        async def on_progress(done: int, total: int):
            await self._transition(
                job.id, progress=PROGRESS[JobStep.CUTTING_CLIPS] + span * done / total
            )

        result = await self.renderer.render(
            workdir / job.video_path,
            segments_from_json(job.transcript_data),
            [SelectedClip.from_dict(c) for c in job.clips_data or []],
            ClipParams.from_job(job),
            workdir,
            offset=job.video_offset or 0.0,
            progress_callback=on_progress,
            locator=lambda filename: artifact_url(job.id, filename),
        )
        return {"clips": json.dumps([c.to_dict() for c in result.clips])}

    # =========================================================================
    # Persistence helpers
    # =========================================================================

    def _lock_for(self, job_id: str) -> asyncio.Lock:
        with self._registry_lock:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = self._locks[job_id] = asyncio.Lock()
            return lock

    def _is_cancel_requested(self, job_id: str) -> bool:
        with self._registry_lock:
            return job_id in self._cancel_requested

    async def _transition(self, job_id: str, **fields) -> Job:
        """Apply and commit a change to the job row."""
        async with self.session_maker() as session:
            job = await session.get(Job, job_id)
            if job is None:
                raise JobNotFound(f"Job {job_id} not found")
            if "progress" in fields:
                # Progress never moves backwards
                fields["progress"] = max(job.progress or 0.0, fields["progress"])
            for name, value in fields.items():
                setattr(job, name, value)
            job.updated_at = datetime.utcnow()
            await session.commit()
            return job

    async def _fail(self, job_id: str, error: Exception) -> Job:
        job = await self.status(job_id)
        if job.is_terminal:
            return job

        if isinstance(error, ClipsmithError):
            logger.error(f"Job {job_id} failed at {job.current_step.value}: {error}")
        else:
            logger.exception(f"Job {job_id} failed at {job.current_step.value}")

        message = str(error) or type(error).__name__
        job = await self._transition(
            job_id,
            status=JobStatus.FAILED,
            current_step=JobStep.ERROR,
            error_message=message[:4096],
            completed_at=datetime.utcnow(),
        )
        await self.workspace.cleanup(job_id, keep=self._retained_files(job))
        return job

    def _retained_files(self, job: Job) -> List[str]:
        """Uploaded sources outlive a failure so the job can be retried."""
        if job.source_kind != SourceKind.UPLOAD or not job.source_path:
            return []
        source_path = Path(job.source_path)
        if source_path.parent != self.workspace.path_for(job.id):
            return []
        return [source_path.name]
