"""Source reference parsing."""
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from clipsmith.errors import ValidationError
from clipsmith.models.job import SourceKind

YOUTUBE_URL_PATTERN = re.compile(
    r"^(?:https?://)?(?:www\.|m\.|music\.)?"
    r"(?:youtube\.com/(?:watch\?(?:.*&)?v=|shorts/|embed/|v/|live/)|youtu\.be/)"
    r"([A-Za-z0-9_-]{11})"
)
VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")


@dataclass(frozen=True)
class SourceRef:
    """A parsed reference to the source video."""
    kind: SourceKind
    url: Optional[str] = None
    video_id: Optional[str] = None
    path: Optional[Path] = None

    @property
    def fetch_url(self) -> Optional[str]:
        """URL handed to downloaders."""
        if self.kind == SourceKind.YOUTUBE:
            return f"https://www.youtube.com/watch?v={self.video_id}"
        return self.url

    def describe(self) -> str:
        if self.kind == SourceKind.YOUTUBE:
            return f"youtube:{self.video_id}"
        if self.kind == SourceKind.UPLOAD:
            return f"upload:{self.path.name if self.path else '?'}"
        return self.url or "?"


def extract_video_id(value: str) -> Optional[str]:
    """Extract a YouTube video id from a URL or bare id."""
    value = value.strip()
    match = YOUTUBE_URL_PATTERN.match(value)
    if match:
        return match.group(1)
    if VIDEO_ID_PATTERN.match(value):
        return value
    return None


def parse_source(value: str) -> SourceRef:
    """
    Parse a user-supplied URL into a source reference.

    Raises:
        ValidationError: If the value is not a YouTube reference or an http(s) URL
    """
    if not value or not value.strip():
        raise ValidationError("No source URL provided")

    value = value.strip()
    video_id = extract_video_id(value)
    if video_id:
        return SourceRef(
            kind=SourceKind.YOUTUBE,
            url=f"https://www.youtube.com/watch?v={video_id}",
            video_id=video_id,
        )

    parsed = urlparse(value)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return SourceRef(kind=SourceKind.DIRECT_URL, url=value)

    raise ValidationError(f"Unrecognized source: {value[:200]}")


def upload_source(path: Path) -> SourceRef:
    """Source reference for a file already stored in a job's workspace."""
    return SourceRef(kind=SourceKind.UPLOAD, path=Path(path))


def source_from_job(job) -> SourceRef:
    """Rebuild the source reference persisted on a job row."""
    if job.source_kind == SourceKind.UPLOAD:
        return upload_source(Path(job.source_path))
    return SourceRef(kind=job.source_kind, url=job.source_url, video_id=job.video_id)
