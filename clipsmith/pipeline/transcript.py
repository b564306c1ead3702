"""Time-stamped transcript representation consumed by every later stage."""
from dataclasses import dataclass
from typing import Iterable, List


@dataclass(frozen=True)
class TranscriptSegment:
    """One time-stamped unit of recognized speech."""
    index: int
    start: float
    end: float
    text: str

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(
                f"Segment {self.index} ends before it starts ({self.start:.2f} > {self.end:.2f})"
            )

    @property
    def duration(self) -> float:
        return self.end - self.start

    def overlaps(self, start: float, end: float) -> bool:
        """True if any part of the segment lies inside [start, end)."""
        return self.start < end and self.end > start

    def shifted(self, offset: float, index: int = None) -> "TranscriptSegment":
        return TranscriptSegment(
            index=self.index if index is None else index,
            start=self.start + offset,
            end=self.end + offset,
            text=self.text,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.index,
            "start": self.start,
            "end": self.end,
            "text": self.text,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TranscriptSegment":
        return cls(
            index=int(data.get("id", data.get("index", 0))),
            start=float(data["start"]),
            end=float(data["end"]),
            text=str(data.get("text", "")),
        )


def normalize_segments(segments: Iterable[TranscriptSegment]) -> List[TranscriptSegment]:
    """Order segments by start time and renumber them 0..N-1."""
    ordered = sorted(segments, key=lambda s: (s.start, s.end))
    return [
        TranscriptSegment(index=i, start=s.start, end=s.end, text=s.text)
        for i, s in enumerate(ordered)
    ]


def transcript_duration(segments: List[TranscriptSegment]) -> float:
    """End of the last segment, or 0 for an empty transcript."""
    if not segments:
        return 0.0
    return max(s.end for s in segments)


def full_text(segments: Iterable[TranscriptSegment]) -> str:
    return " ".join(s.text for s in segments if s.text)


def segments_to_json(segments: List[TranscriptSegment]) -> dict:
    """Serializable transcript stored on the job record."""
    return {
        "text": full_text(segments),
        "segments": [s.to_dict() for s in segments],
    }


def segments_from_json(data: dict) -> List[TranscriptSegment]:
    if not data:
        return []
    return [TranscriptSegment.from_dict(item) for item in data.get("segments", [])]
