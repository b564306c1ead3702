"""Tests for the job orchestrator state machine."""
import asyncio
from pathlib import Path

import pytest
import pytest_asyncio

from clipsmith.acquisition.chain import AcquiredAudio, AcquiredVideo
from clipsmith.acquisition.sources import parse_source, upload_source
from clipsmith.db.database import close_db, create_session_maker, init_db
from clipsmith.errors import AcquisitionExhausted, JobNotFound
from clipsmith.models.job import JobStatus, JobStep
from clipsmith.pipeline import orchestrator as orchestrator_module
from clipsmith.pipeline.orchestrator import PROGRESS, Orchestrator
from clipsmith.pipeline.params import ClipParams
from clipsmith.pipeline.render import ARCHIVE_FILENAME, RenderResult
from clipsmith.pipeline.transcript import TranscriptSegment
from clipsmith.services.job_service import JobService
from clipsmith.workers.job_runner import JobRunner
from clipsmith.workspace import WorkspaceManager

SOURCE = parse_source("https://youtu.be/dQw4w9WgXcQ")


def _transcript(total=300, step=10):
    return [
        TranscriptSegment(i, float(t), float(t + step), "how to win with this secret trick")
        for i, t in enumerate(range(0, total, step))
    ]


class _FakeAcquisition:
    def __init__(self, audio_error=None):
        self.audio_error = audio_error
        self.sections = []

    async def acquire_audio(self, source, workdir):
        if self.audio_error:
            raise self.audio_error
        path = Path(workdir) / "audio.mp3"
        path.write_bytes(b"audio")
        return AcquiredAudio(data=b"audio", filename=path.name, provider="fake", path=path)

    async def acquire_video(self, source, workdir, section=None):
        self.sections.append(section)
        path = Path(workdir) / "section.mp4"
        path.write_bytes(b"video")
        return AcquiredVideo(path=path, provider="fake", offset=section[0] if section else 0.0)


class _FakeTranscriber:
    def __init__(self, segments=None):
        self.segments = _transcript() if segments is None else segments
        self.calls = 0

    async def transcribe(self, audio, filename, workdir, duration_hint=None):
        self.calls += 1
        return self.segments


class _FakeRenderer:
    def __init__(self):
        self.calls = []

    async def render(self, video_path, segments, clips, params, workdir, offset=0.0,
                     progress_callback=None, locator=None):
        self.calls.append((video_path, offset, params))
        rendered = []
        for i, clip in enumerate(clips):
            (Path(workdir) / clip.filename).write_bytes(b"clip")
            rendered.append(clip.with_locator(locator(clip.filename)))
            if progress_callback:
                await progress_callback(i + 1, len(clips))
        return RenderResult(clips=rendered, archive_filename=ARCHIVE_FILENAME)


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine, maker = create_session_maker(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
    await init_db(engine)
    yield maker
    await close_db(engine)


@pytest_asyncio.fixture
async def workspace(tmp_path):
    manager = WorkspaceManager(tmp_path / "workspaces", cleanup_delay=600)
    yield manager
    await manager.shutdown()


@pytest.fixture(autouse=True)
def fixed_duration(monkeypatch):
    async def fake_duration(path):
        return 300.0
    monkeypatch.setattr(orchestrator_module, "get_media_duration", fake_duration)


def _orchestrator(session_maker, workspace, acquisition=None, transcriber=None, renderer=None):
    return Orchestrator(
        session_maker=session_maker,
        acquisition=acquisition or _FakeAcquisition(),
        transcriber=transcriber or _FakeTranscriber(),
        renderer=renderer or _FakeRenderer(),
        workspace=workspace,
    )


PARAMS = ClipParams(clip_duration=30, max_clips=3)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_create_inserts_queued_job(self, session_maker, workspace):
        orch = _orchestrator(session_maker, workspace)
        job_id = await orch.create(SOURCE, PARAMS)

        job = await orch.status(job_id)
        assert job.status == JobStatus.QUEUED
        assert job.current_step == JobStep.QUEUED
        assert job.progress == PROGRESS[JobStep.QUEUED]
        assert job.video_id == "dQw4w9WgXcQ"

    @pytest.mark.asyncio
    async def test_run_completes_job(self, session_maker, workspace):
        acquisition = _FakeAcquisition()
        renderer = _FakeRenderer()
        orch = _orchestrator(session_maker, workspace, acquisition=acquisition, renderer=renderer)
        job_id = await orch.create(SOURCE, PARAMS)

        job = await orch.run(job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.current_step == JobStep.DONE
        assert job.progress == 100.0
        assert job.completed_at is not None
        assert len(job.transcript_data["segments"]) == 30
        clips = job.clips_data
        assert 1 <= len(clips) <= 3
        assert all(c["url"] == f"/api/files/{job_id}/{c['filename']}" for c in clips)

        # Video is fetched only for the span of the selected clips
        section = acquisition.sections[0]
        assert section == (min(c["start"] for c in clips), max(c["end"] for c in clips))
        assert renderer.calls[0][1] == section[0]
        assert job_id in workspace._timers

    @pytest.mark.asyncio
    async def test_advance_walks_stages_with_monotonic_progress(self, session_maker, workspace):
        orch = _orchestrator(session_maker, workspace)
        job_id = await orch.create(SOURCE, PARAMS)

        steps, progress = [], []
        job = await orch.status(job_id)
        while not job.is_terminal:
            job = await orch.advance(job_id)
            steps.append(job.current_step)
            progress.append(job.progress)

        assert steps == [
            JobStep.TRANSCRIBING,
            JobStep.FINDING_CLIPS,
            JobStep.DOWNLOADING_VIDEO,
            JobStep.CUTTING_CLIPS,
            JobStep.DONE,
        ]
        assert progress == sorted(progress)

    @pytest.mark.asyncio
    async def test_advance_on_terminal_job_is_noop(self, session_maker, workspace):
        transcriber = _FakeTranscriber()
        orch = _orchestrator(session_maker, workspace, transcriber=transcriber)
        job_id = await orch.create(SOURCE, PARAMS)
        done = await orch.run(job_id)

        again = await orch.advance(job_id)

        assert again.status == JobStatus.COMPLETED
        assert again.updated_at == done.updated_at
        assert transcriber.calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_advances_run_one_stage_each(self, session_maker, workspace):
        transcriber = _FakeTranscriber()
        orch = _orchestrator(session_maker, workspace, transcriber=transcriber)
        job_id = await orch.create(SOURCE, PARAMS)

        await asyncio.gather(orch.advance(job_id), orch.advance(job_id))

        job = await orch.status(job_id)
        assert job.current_step == JobStep.FINDING_CLIPS
        assert transcriber.calls == 1

    @pytest.mark.asyncio
    async def test_status_of_unknown_job(self, session_maker, workspace):
        orch = _orchestrator(session_maker, workspace)
        with pytest.raises(JobNotFound):
            await orch.status("missing")


class TestFailures:
    @pytest.mark.asyncio
    async def test_acquisition_failure_fails_job_and_cleans_workspace(self, session_maker, workspace):
        error = AcquisitionExhausted("audio", [("yt-dlp", "HTTP 403")])
        orch = _orchestrator(session_maker, workspace, acquisition=_FakeAcquisition(audio_error=error))
        job_id = await orch.create(SOURCE, PARAMS)

        job = await orch.run(job_id)

        assert job.status == JobStatus.FAILED
        assert job.current_step == JobStep.ERROR
        assert "yt-dlp: HTTP 403" in job.error_message
        assert not workspace.path_for(job_id).exists()

    @pytest.mark.asyncio
    async def test_silent_video_fails_with_no_highlights(self, session_maker, workspace):
        orch = _orchestrator(session_maker, workspace, transcriber=_FakeTranscriber(segments=[]))
        job_id = await orch.create(SOURCE, PARAMS)

        job = await orch.run(job_id)

        assert job.status == JobStatus.FAILED
        assert "Could not find suitable clips" in job.error_message

    @pytest.mark.asyncio
    async def test_unexpected_error_is_recorded(self, session_maker, workspace):
        orch = _orchestrator(
            session_maker, workspace, acquisition=_FakeAcquisition(audio_error=RuntimeError("boom"))
        )
        job_id = await orch.create(SOURCE, PARAMS)

        job = await orch.run(job_id)

        assert job.status == JobStatus.FAILED
        assert job.error_message == "boom"

    @pytest.mark.asyncio
    async def test_failed_upload_can_be_retried(self, session_maker, workspace):
        error = AcquisitionExhausted("audio", [("local-file", "ffmpeg exited with code 1")])
        orch = _orchestrator(session_maker, workspace, acquisition=_FakeAcquisition(audio_error=error))
        source_path = workspace.allocate("upload-job") / "source.mp4"
        source_path.write_bytes(b"uploaded video")
        (source_path.parent / "audio.mp3").write_bytes(b"partial")
        job_id = await orch.create(upload_source(source_path), PARAMS, job_id="upload-job")

        job = await orch.run(job_id)

        assert job.status == JobStatus.FAILED
        assert source_path.exists()
        assert not (source_path.parent / "audio.mp3").exists()
        assert job_id in workspace._timers

        class _Runner:
            started = []

            async def start_job(self, job_id):
                self.started.append(job_id)
                return True

        service = JobService(orch, _Runner(), workspace)
        retried = await service.retry(job_id)

        assert retried.id != job_id
        assert retried.status == JobStatus.QUEUED
        new_source = Path(retried.source_path)
        assert new_source.parent == workspace.path_for(retried.id)
        assert new_source.read_bytes() == b"uploaded video"


class TestCancellationAndResume:
    @pytest.mark.asyncio
    async def test_cancelled_job_fails_at_stage_boundary(self, session_maker, workspace):
        orch = _orchestrator(session_maker, workspace)
        job_id = await orch.create(SOURCE, PARAMS)
        await orch.advance(job_id)

        assert await orch.cancel(job_id) is True
        job = await orch.run(job_id)

        assert job.status == JobStatus.FAILED
        assert job.error_message == "Job cancelled"
        assert job.current_step == JobStep.ERROR

    @pytest.mark.asyncio
    async def test_cancel_terminal_job_returns_false(self, session_maker, workspace):
        orch = _orchestrator(session_maker, workspace)
        job_id = await orch.create(SOURCE, PARAMS)
        await orch.run(job_id)
        assert await orch.cancel(job_id) is False

    @pytest.mark.asyncio
    async def test_resume_incomplete_lists_unfinished_jobs(self, session_maker, workspace):
        orch = _orchestrator(session_maker, workspace)
        finished = await orch.create(SOURCE, PARAMS)
        await orch.run(finished)
        queued = await orch.create(SOURCE, PARAMS)
        processing = await orch.create(SOURCE, PARAMS)
        await orch.advance(processing)

        assert sorted(await orch.resume_incomplete()) == sorted([queued, processing])

    @pytest.mark.asyncio
    async def test_runner_drives_job_in_background(self, session_maker, workspace):
        orch = _orchestrator(session_maker, workspace)
        runner = JobRunner(orch)
        job_id = await orch.create(SOURCE, PARAMS)

        assert await runner.start_job(job_id) is True
        assert await runner.start_job(job_id) is False
        await asyncio.wait_for(runner._running_jobs[job_id], timeout=5)

        assert not runner.is_job_running(job_id)
        assert (await orch.status(job_id)).status == JobStatus.COMPLETED
