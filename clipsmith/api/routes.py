"""API routes."""
import logging
import shutil
from typing import List

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse

from clipsmith.api.schemas import (
    CancelResponse,
    ClipOptions,
    DependencyCheckResponse,
    HealthResponse,
    JobCreatedResponse,
    JobCreateRequest,
    JobStatusResponse,
)
from clipsmith.config import settings
from clipsmith.errors import JobNotFound, ValidationError
from clipsmith.services.job_service import JobService
from clipsmith.utils.ffmpeg import check_ffmpeg_available, check_ffprobe_available
from clipsmith.utils.ytdlp import check_ytdlp_available
from clipsmith.workspace import WorkspaceManager

router = APIRouter()
logger = logging.getLogger(__name__)

MEDIA_TYPES = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".mkv": "video/x-matroska",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".m4a": "audio/mp4",
    ".zip": "application/zip",
    ".srt": "text/plain",
    ".ass": "text/plain",
    ".vtt": "text/plain",
    ".json": "application/json",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}


def get_job_service(request: Request) -> JobService:
    return request.app.state.job_service


def get_workspace(request: Request) -> WorkspaceManager:
    return request.app.state.workspace


# =============================================================================
# Health & System
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Check API health and dependencies."""
    ffmpeg_ok = check_ffmpeg_available()
    ffprobe_ok = check_ffprobe_available()
    ytdlp_ok = check_ytdlp_available()
    transcription_ok = bool(settings.groq_api_key)

    all_ok = ffmpeg_ok and ffprobe_ok and ytdlp_ok and transcription_ok

    message = None
    if not all_ok:
        missing = []
        if not ffmpeg_ok:
            missing.append("ffmpeg")
        if not ffprobe_ok:
            missing.append("ffprobe")
        if not ytdlp_ok:
            missing.append("yt-dlp")
        if not transcription_ok:
            missing.append("GROQ_API_KEY")
        message = f"Missing dependencies: {', '.join(missing)}"

    return HealthResponse(
        status="healthy" if all_ok else "degraded",
        ffmpeg_available=ffmpeg_ok,
        ffprobe_available=ffprobe_ok,
        ytdlp_available=ytdlp_ok,
        transcription_configured=transcription_ok,
        message=message
    )


@router.get("/dependencies", response_model=List[DependencyCheckResponse])
async def check_dependencies():
    """Check status of all external tools."""
    deps = []
    for name, binary, install in (
        ("ffmpeg", settings.ffmpeg_path, "brew install ffmpeg"),
        ("ffprobe", settings.ffprobe_path, "brew install ffmpeg"),
        ("yt-dlp", settings.ytdlp_path, "brew install yt-dlp"),
    ):
        path = shutil.which(binary)
        deps.append(DependencyCheckResponse(
            name=name,
            available=path is not None,
            path=path,
            install_command=install
        ))
    return deps


# =============================================================================
# Jobs
# =============================================================================

@router.post("/jobs", response_model=JobCreatedResponse)
async def create_job(
    data: JobCreateRequest,
    service: JobService = Depends(get_job_service)
):
    """Create a job from a URL and start processing it."""
    try:
        job = await service.submit_url(data.url, data.to_params())
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return JobCreatedResponse.from_job(job)


@router.post("/jobs/upload", response_model=JobCreatedResponse)
async def create_job_upload(
    video: UploadFile = File(...),
    clip_duration: float = Form(settings.default_clip_duration, alias="clipDuration"),
    max_clips: int = Form(settings.default_max_clips, alias="maxClips"),
    aspect_ratio: str = Form("9:16", alias="aspectRatio"),
    add_captions: bool = Form(True, alias="addCaptions"),
    caption_style: str = Form("classic", alias="captionStyle"),
    service: JobService = Depends(get_job_service)
):
    """Create a job from an uploaded video file."""
    options = ClipOptions(
        clip_duration=clip_duration,
        max_clips=max_clips,
        aspect_ratio=aspect_ratio,
        add_captions=add_captions,
        caption_style=caption_style,
    )
    try:
        job = await service.submit_upload(video.filename, video, options.to_params())
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        await video.close()
    return JobCreatedResponse.from_job(job)


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job(job_id: str, service: JobService = Depends(get_job_service)):
    """Get job status and, once completed, its clips."""
    try:
        job = await service.get_job(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobStatusResponse.from_job(job)


@router.post("/jobs/{job_id}/process", response_model=JobStatusResponse)
async def process_job(job_id: str, service: JobService = Depends(get_job_service)):
    """Enqueue a job for processing. Safe to call repeatedly."""
    try:
        job = await service.process(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobStatusResponse.from_job(job)


@router.post("/jobs/{job_id}/cancel", response_model=CancelResponse)
async def cancel_job(job_id: str, service: JobService = Depends(get_job_service)):
    """Ask a job to stop at its next stage boundary."""
    try:
        cancelled = await service.cancel(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job not found")
    return CancelResponse(job_id=job_id, cancelled=cancelled)


@router.post("/jobs/{job_id}/retry", response_model=JobCreatedResponse)
async def retry_job(job_id: str, service: JobService = Depends(get_job_service)):
    """Start a new job with the same source and options."""
    try:
        job = await service.retry(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job not found")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return JobCreatedResponse.from_job(job)


# =============================================================================
# Files
# =============================================================================

@router.get("/files/{session_id}/{filename}")
async def get_file(
    session_id: str,
    filename: str,
    workspace: WorkspaceManager = Depends(get_workspace)
):
    """Serve a job artifact (clip, thumbnail, archive)."""
    try:
        path = workspace.resolve_artifact(session_id, filename)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not path.is_file():
        raise HTTPException(status_code=404, detail="File not found")

    media_type = MEDIA_TYPES.get(path.suffix.lower(), "application/octet-stream")
    return FileResponse(
        path,
        media_type=media_type,
        filename=path.name,
        content_disposition_type="inline" if media_type.startswith("video/") else "attachment"
    )
