"""Job model for the clip generation pipeline."""
import enum
import json
from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, Enum, Float, Integer, String, Text

from clipsmith.db.database import Base


class JobStatus(str, enum.Enum):
    """Job status enumeration."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStep(str, enum.Enum):
    """Pipeline stage labels, in execution order."""
    QUEUED = "queued"
    DOWNLOADING_AUDIO = "downloading_audio"
    TRANSCRIBING = "transcribing"
    FINDING_CLIPS = "finding_clips"
    DOWNLOADING_VIDEO = "downloading_video"
    CUTTING_CLIPS = "cutting_clips"
    DONE = "done"
    ERROR = "error"


class SourceKind(str, enum.Enum):
    """Where the source video comes from."""
    YOUTUBE = "youtube"
    DIRECT_URL = "direct_url"
    UPLOAD = "upload"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class Job(Base):
    """One request to turn a source video into ranked clips."""

    __tablename__ = "jobs"

    # Also the working directory / artifact session id
    id = Column(String(36), primary_key=True, index=True)

    # Source information
    source_kind = Column(Enum(SourceKind), nullable=False)
    source_url = Column(String(2048), nullable=True)
    video_id = Column(String(32), nullable=True)
    source_path = Column(String(4096), nullable=True)
    title = Column(String(512), nullable=True)
    thumbnail_url = Column(String(2048), nullable=True)

    # State machine
    status = Column(Enum(JobStatus), default=JobStatus.QUEUED, nullable=False)
    current_step = Column(Enum(JobStep), default=JobStep.QUEUED, nullable=False)
    progress = Column(Float, default=0.0, nullable=False)  # 0.0 to 100.0

    # Requested parameters
    clip_duration = Column(Float, nullable=False)
    max_clips = Column(Integer, nullable=False)
    aspect_ratio = Column(String(8), nullable=False)
    add_captions = Column(Boolean, default=True, nullable=False)
    caption_style = Column(String(32), nullable=False)

    # Results/errors
    transcript = Column(Text, nullable=True)  # JSON {text, segments}
    clips = Column(Text, nullable=True)  # JSON result set
    error_message = Column(String(4096), nullable=True)

    # Acquired source video inside the working directory
    video_path = Column(String(4096), nullable=True)
    video_offset = Column(Float, default=0.0, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Job(id={self.id}, status={self.status}, step={self.current_step})>"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def transcript_data(self):
        """Decoded transcript, or None if not produced yet."""
        return json.loads(self.transcript) if self.transcript else None

    @property
    def clips_data(self):
        """Decoded clip result set, or None if not produced yet."""
        return json.loads(self.clips) if self.clips else None

