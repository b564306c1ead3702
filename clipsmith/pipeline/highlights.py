"""Highlight selection.

Slides a fixed-length window across the transcript, scores the text inside
each window with a keyword heuristic, and greedily keeps the best
non-overlapping windows.

The score is a cheap proxy for viewer engagement, not semantic understanding.
Any callable mapping text to a float can be passed as ``scorer`` to replace it.
"""
import logging
import math
import re
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional

from clipsmith.errors import NoHighlightsFound
from clipsmith.pipeline.transcript import TranscriptSegment, transcript_duration

logger = logging.getLogger(__name__)

ENGAGEMENT_KEYWORDS = (
    "secret", "amazing", "incredible", "shocking", "important", "key", "tip",
    "trick", "hack", "must", "need", "should", "best", "worst", "never", "always",
    "mistake", "success", "fail", "win", "lose", "money", "free", "easy", "hard",
    "simple", "quick", "fast", "how to", "why", "what if", "imagine", "think about",
    "listen", "watch", "look", "here's", "this is", "the truth", "actually",
    "believe", "crazy", "insane", "mind", "blow", "game changer", "life changing",
)
QUESTION_INDICATORS = ("?", "how", "why", "what", "when", "where", "who", "which")
EMOTIONAL_TERMS = ("love", "hate", "fear", "hope", "dream", "angry", "happy", "sad", "excited")

KEYWORD_WEIGHT = 2.0
QUESTION_WEIGHT = 1.5
EMOTION_WEIGHT = 1.0
EXCLAMATION_BONUS = 0.5
WORD_BAND_BONUS = 1.0
WORD_BAND = (10, 50)


def _term_pattern(term: str) -> re.Pattern:
    if any(ch.isalnum() for ch in term):
        return re.compile(r"(?<!\w)" + re.escape(term) + r"(?!\w)")
    return re.compile(re.escape(term))


_KEYWORD_PATTERNS = [_term_pattern(t) for t in ENGAGEMENT_KEYWORDS]
_QUESTION_PATTERNS = [_term_pattern(t) for t in QUESTION_INDICATORS]
_EMOTION_PATTERNS = [_term_pattern(t) for t in EMOTIONAL_TERMS]


@dataclass
class ClipCandidate:
    """A proposed window, scored before final selection."""
    start: float
    end: float
    text: str
    score: float = 0.0

    @property
    def duration(self) -> float:
        return self.end - self.start

    def overlaps(self, other: "ClipCandidate") -> bool:
        """Half-open interval overlap: touching windows do not overlap."""
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True)
class SelectedClip:
    """A candidate promoted into a job's final result set."""
    id: int
    start: float
    end: float
    duration: float
    text: str
    score: float
    filename: str
    url: Optional[str] = None
    thumbnail: Optional[str] = field(default=None, compare=False)

    def with_locator(self, url: str, thumbnail: Optional[str] = None) -> "SelectedClip":
        return replace(self, url=url, thumbnail=thumbnail)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "start": self.start,
            "end": self.end,
            "duration": self.duration,
            "text": self.text,
            "score": self.score,
            "filename": self.filename,
            "url": self.url,
            "thumbnail": self.thumbnail,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SelectedClip":
        return cls(
            id=int(data["id"]),
            start=float(data["start"]),
            end=float(data["end"]),
            duration=float(data["duration"]),
            text=data.get("text", ""),
            score=float(data.get("score", 0.0)),
            filename=data["filename"],
            url=data.get("url"),
            thumbnail=data.get("thumbnail"),
        )


def score_text(text: str) -> float:
    """Heuristic engagement score for a block of transcript text."""
    lower = text.lower()
    score = 0.0

    for pattern in _KEYWORD_PATTERNS:
        score += KEYWORD_WEIGHT * len(pattern.findall(lower))
    for pattern in _QUESTION_PATTERNS:
        score += QUESTION_WEIGHT * len(pattern.findall(lower))
    for pattern in _EMOTION_PATTERNS:
        score += EMOTION_WEIGHT * len(pattern.findall(lower))

    if "!" in text:
        score += EXCLAMATION_BONUS

    word_count = len(text.split())
    if WORD_BAND[0] <= word_count <= WORD_BAND[1]:
        score += WORD_BAND_BONUS

    return score


def generate_candidates(
    segments: List[TranscriptSegment],
    target_duration: float,
    step_fraction: float = 0.5,
    scorer: Callable[[str], float] = score_text,
) -> List[ClipCandidate]:
    """
    Slide a window of ``target_duration`` over the transcript timeline.

    Windows start at multiples of ``target_duration * step_fraction`` and are
    clipped to the end of the last segment. A window's text is every segment
    that is fully or partially inside it; windows without text are dropped.
    """
    if target_duration <= 0:
        raise ValueError("target_duration must be positive")
    if not 0 < step_fraction <= 1:
        raise ValueError("step_fraction must be in (0, 1]")

    total = transcript_duration(segments)
    step = target_duration * step_fraction
    candidates = []

    i = 0
    while i * step < total:
        start = i * step
        end = min(start + target_duration, total)
        inside = [
            seg for seg in segments
            if seg.start < end and (seg.end > start or seg.start >= start)
        ]
        text = " ".join(seg.text for seg in inside if seg.text).strip()
        if text:
            candidates.append(ClipCandidate(start=start, end=end, text=text, score=scorer(text)))
        i += 1

    return candidates


def clip_filename(clip_id: int, start: float, end: float) -> str:
    return f"clip_{clip_id}_{math.floor(start)}s-{math.floor(end)}s.mp4"


def select_highlights(
    segments: List[TranscriptSegment],
    target_duration: float,
    max_clips: int,
    step_fraction: float = 0.5,
    scorer: Callable[[str], float] = score_text,
) -> List[SelectedClip]:
    """
    Pick up to ``max_clips`` non-overlapping highlight windows.

    Candidates are ranked by score (ties go to the earlier window), accepted
    greedily unless they overlap an accepted window, then returned in start
    order with ids 1..N.

    Raises:
        NoHighlightsFound: if there are no candidates or none could be accepted
    """
    if max_clips < 1:
        raise ValueError("max_clips must be at least 1")

    candidates = generate_candidates(segments, target_duration, step_fraction, scorer)
    if not candidates:
        raise NoHighlightsFound()

    ranked = sorted(candidates, key=lambda c: (-c.score, c.start))
    accepted: List[ClipCandidate] = []
    for candidate in ranked:
        if len(accepted) >= max_clips:
            break
        if any(candidate.overlaps(kept) for kept in accepted):
            continue
        accepted.append(candidate)

    if not accepted:
        raise NoHighlightsFound()

    accepted.sort(key=lambda c: c.start)
    logger.info(
        f"Selected {len(accepted)} of {len(candidates)} candidate windows "
        f"(target {target_duration:.0f}s, max {max_clips})"
    )

    return [
        SelectedClip(
            id=idx,
            start=c.start,
            end=c.end,
            duration=c.duration,
            text=c.text,
            score=c.score,
            filename=clip_filename(idx, c.start, c.end),
        )
        for idx, c in enumerate(accepted, start=1)
    ]
