"""Pydantic schemas for API requests and responses."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from clipsmith.config import settings
from clipsmith.models.job import Job, JobStatus
from clipsmith.pipeline.params import ClipParams
from clipsmith.pipeline.render import ARCHIVE_FILENAME


class CamelModel(BaseModel):
    """Serialized with camelCase keys; accepts either spelling on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Job Schemas
# =============================================================================

class ClipOptions(CamelModel):
    """Options that control how clips are selected and rendered."""
    clip_duration: float = Field(settings.default_clip_duration, description="Target clip length in seconds")
    max_clips: int = Field(settings.default_max_clips, description="Maximum number of clips")
    aspect_ratio: str = Field("9:16", description="9:16, 1:1 or 16:9")
    add_captions: bool = Field(True, description="Burn captions into the clips")
    caption_style: str = Field("classic", description="simple, classic, bold, minimal or karaoke")

    def to_params(self) -> ClipParams:
        return ClipParams(
            clip_duration=self.clip_duration,
            max_clips=self.max_clips,
            aspect_ratio=self.aspect_ratio,
            add_captions=self.add_captions,
            caption_style=self.caption_style,
        )


class JobCreateRequest(ClipOptions):
    """Request to create a job from a URL."""
    url: str = Field(..., description="YouTube URL, video id or direct media URL")


class VideoInfo(CamelModel):
    source_kind: str
    video_id: Optional[str] = None
    url: Optional[str] = None
    title: Optional[str] = None
    thumbnail: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job) -> "VideoInfo":
        return cls(
            source_kind=job.source_kind.value,
            video_id=job.video_id,
            url=job.source_url,
            title=job.title,
            thumbnail=job.thumbnail_url,
        )


class JobCreatedResponse(CamelModel):
    """Response for a newly created job."""
    job_id: str
    status: str
    video_info: VideoInfo

    @classmethod
    def from_job(cls, job: Job) -> "JobCreatedResponse":
        return cls(job_id=job.id, status=job.status.value, video_info=VideoInfo.from_job(job))


class ClipResponse(CamelModel):
    """One rendered (or selected) clip."""
    id: int
    start: float
    end: float
    duration: float
    text: str
    score: float
    filename: str
    url: Optional[str] = None
    thumbnail: Optional[str] = None


class JobStatusResponse(CamelModel):
    """Job status response."""
    job_id: str
    status: str
    current_step: str
    progress: float
    video_info: VideoInfo
    transcript: Optional[dict] = None
    clips: Optional[List[ClipResponse]] = None
    zip_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusResponse":
        completed = job.status == JobStatus.COMPLETED
        clips = job.clips_data
        return cls(
            job_id=job.id,
            status=job.status.value,
            current_step=job.current_step.value,
            progress=job.progress,
            video_info=VideoInfo.from_job(job),
            transcript=job.transcript_data,
            # Unrendered selections are internal until the job completes
            clips=[ClipResponse(**c) for c in clips] if completed and clips else None,
            zip_url=f"/api/files/{job.id}/{ARCHIVE_FILENAME}" if completed else None,
            error_message=job.error_message,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class CancelResponse(CamelModel):
    job_id: str
    cancelled: bool


# =============================================================================
# System Schemas
# =============================================================================

class HealthResponse(CamelModel):
    """Health check response."""
    status: str
    ffmpeg_available: bool
    ffprobe_available: bool
    ytdlp_available: bool
    transcription_configured: bool
    message: Optional[str] = None


class DependencyCheckResponse(CamelModel):
    """Dependency check response."""
    name: str
    available: bool
    path: Optional[str] = None
    install_command: Optional[str] = None
