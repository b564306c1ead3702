"""Per-job clip options."""
from dataclasses import dataclass

from clipsmith.config import settings
from clipsmith.errors import ValidationError
from clipsmith.pipeline.captions import CaptionStyleName
from clipsmith.utils.ffmpeg import ASPECT_RESOLUTIONS

MAX_CLIPS_LIMIT = 20
CLIP_DURATION_RANGE = (5.0, 600.0)


@dataclass(frozen=True)
class ClipParams:
    clip_duration: float = settings.default_clip_duration
    max_clips: int = settings.default_max_clips
    aspect_ratio: str = "9:16"
    add_captions: bool = True
    caption_style: str = CaptionStyleName.CLASSIC.value

    def validate(self) -> "ClipParams":
        """
        Check option ranges.

        Raises:
            ValidationError: On any out-of-range option
        """
        low, high = CLIP_DURATION_RANGE
        if not low <= self.clip_duration <= high:
            raise ValidationError(f"clipDuration must be between {low:.0f} and {high:.0f} seconds")
        if not 1 <= self.max_clips <= MAX_CLIPS_LIMIT:
            raise ValidationError(f"maxClips must be between 1 and {MAX_CLIPS_LIMIT}")
        if self.aspect_ratio not in ASPECT_RESOLUTIONS:
            raise ValidationError(
                f"aspectRatio must be one of {', '.join(ASPECT_RESOLUTIONS)}"
            )
        try:
            CaptionStyleName(self.caption_style)
        except ValueError:
            raise ValidationError(
                f"captionStyle must be one of {', '.join(s.value for s in CaptionStyleName)}"
            )
        return self

    @property
    def resolution(self):
        return ASPECT_RESOLUTIONS[self.aspect_ratio]

    @classmethod
    def from_job(cls, job) -> "ClipParams":
        return cls(
            clip_duration=job.clip_duration,
            max_clips=job.max_clips,
            aspect_ratio=job.aspect_ratio,
            add_captions=job.add_captions,
            caption_style=job.caption_style,
        )
