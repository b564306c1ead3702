"""Speech-to-text adapter.

Sends audio to a Whisper-compatible transcription endpoint (Groq by default)
and normalizes the reply into TranscriptSegments.
"""
import asyncio
import logging
import math
from pathlib import Path
from typing import Any, List, Optional

from clipsmith.errors import TranscriptionError
from clipsmith.pipeline.transcript import TranscriptSegment, normalize_segments
from clipsmith.utils.ffmpeg import FFmpegError, split_audio

logger = logging.getLogger(__name__)


def _field(obj: Any, name: str, default=None):
    """Read a field from an SDK object or a plain dict."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def merge_chunk_segments(
    chunks: List[List[TranscriptSegment]],
    chunk_seconds: float,
) -> List[TranscriptSegment]:
    """
    Concatenate independently transcribed chunks on one global timeline.

    Chunk i starts at i * chunk_seconds, so every segment in it is shifted
    by that amount.
    """
    merged = []
    for chunk_index, segments in enumerate(chunks):
        offset = chunk_index * chunk_seconds
        for seg in segments:
            merged.append(seg.shifted(offset, index=len(merged)))
    return merged


def synthesize_segments(
    text: str,
    words_per_segment: int,
    total_duration: float,
) -> List[TranscriptSegment]:
    """
    Approximate timing for a transcript that came back as plain text.

    Words are grouped into fixed-size windows spread evenly across the
    estimated duration. Lower fidelity, but keeps the pipeline going.
    """
    words = text.split()
    if not words:
        return []

    count = math.ceil(len(words) / words_per_segment)
    segment_duration = total_duration / count
    return [
        TranscriptSegment(
            index=i,
            start=i * segment_duration,
            end=(i + 1) * segment_duration,
            text=" ".join(words[i * words_per_segment:(i + 1) * words_per_segment]),
        )
        for i in range(count)
    ]


class TranscriptionAdapter:
    """Turns audio bytes into an ordered list of TranscriptSegments."""

    def __init__(
        self,
        client,
        model: str = "whisper-large-v3-turbo",
        language: Optional[str] = "en",
        max_bytes: int = 25 * 1024 * 1024,
        chunk_seconds: float = 300.0,
        words_per_segment: int = 20,
        estimated_duration: float = 300.0,
    ):
        self.client = client
        self.model = model
        self.language = language
        self.max_bytes = max_bytes
        self.chunk_seconds = chunk_seconds
        self.words_per_segment = words_per_segment
        self.estimated_duration = estimated_duration

    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        workdir: Path,
        duration_hint: Optional[float] = None,
    ) -> List[TranscriptSegment]:
        """
        Transcribe audio, chunking it first if it exceeds the service limit.

        Args:
            audio: Encoded audio bytes
            filename: Name (with extension) the service sees for the upload
            workdir: Job workspace for chunk files
            duration_hint: Known audio duration, used only in degraded mode

        Raises:
            TranscriptionError: On service failure or a malformed reply
        """
        if self.client is None:
            raise TranscriptionError("Transcription service is not configured")
        if not audio:
            raise TranscriptionError("No audio to transcribe")

        if len(audio) <= self.max_bytes:
            segments = await self._transcribe_once(audio, filename, duration_hint)
            return normalize_segments(segments)

        logger.info(
            f"Audio is {len(audio) / 1024 / 1024:.1f} MB, splitting into "
            f"{self.chunk_seconds:.0f}s chunks"
        )
        chunk_dir = Path(workdir) / "chunks"
        chunk_dir.mkdir(parents=True, exist_ok=True)
        full_path = chunk_dir / f"full{Path(filename).suffix or '.mp3'}"
        full_path.write_bytes(audio)

        try:
            chunk_paths = await split_audio(full_path, chunk_dir, self.chunk_seconds)
        except FFmpegError as e:
            raise TranscriptionError(f"Could not split audio: {e} {e.stderr}".strip()) from e
        if not chunk_paths:
            raise TranscriptionError("Audio splitting produced no chunks")

        chunks = []
        for i, chunk_path in enumerate(chunk_paths):
            hint = self.chunk_seconds
            if i == len(chunk_paths) - 1 and duration_hint:
                hint = max(1.0, duration_hint - i * self.chunk_seconds)
            logger.info(f"Transcribing chunk {i + 1}/{len(chunk_paths)}")
            chunks.append(await self._transcribe_once(chunk_path.read_bytes(), chunk_path.name, hint))

        return normalize_segments(merge_chunk_segments(chunks, self.chunk_seconds))

    async def _transcribe_once(
        self,
        audio: bytes,
        filename: str,
        duration_hint: Optional[float],
    ) -> List[TranscriptSegment]:
        kwargs = {
            "file": (filename, audio),
            "model": self.model,
            "response_format": "verbose_json",
            "temperature": 0.0,
        }
        if self.language:
            kwargs["language"] = self.language

        try:
            # The SDK call blocks; keep it off the event loop
            response = await asyncio.to_thread(self.client.audio.transcriptions.create, **kwargs)
        except Exception as e:
            raise TranscriptionError(f"Transcription service failed: {e}") from e

        return self._parse_response(response, duration_hint)

    def _parse_response(self, response, duration_hint: Optional[float]) -> List[TranscriptSegment]:
        if response is None:
            raise TranscriptionError("Transcription service returned no response")

        raw_segments = _field(response, "segments")
        text = _field(response, "text") or ""

        if raw_segments:
            segments = []
            try:
                for i, raw in enumerate(raw_segments):
                    start = float(_field(raw, "start"))
                    end = float(_field(raw, "end"))
                    segments.append(TranscriptSegment(
                        index=i,
                        start=start,
                        end=max(start, end),
                        text=str(_field(raw, "text", "")).strip(),
                    ))
            except (TypeError, ValueError) as e:
                raise TranscriptionError(f"Malformed transcription segment: {e}") from e
            return segments

        if not isinstance(text, str):
            raise TranscriptionError("Malformed transcription response")
        if text.strip():
            logger.warning("Transcription has no timing, synthesizing approximate segments")
            return synthesize_segments(
                text,
                self.words_per_segment,
                duration_hint or self.estimated_duration,
            )
        return []


def build_transcription_adapter(settings) -> TranscriptionAdapter:
    """Create the adapter with a Groq client, if an API key is configured."""
    client = None
    if settings.groq_api_key:
        from groq import Groq

        client = Groq(api_key=settings.groq_api_key)

    return TranscriptionAdapter(
        client=client,
        model=settings.transcription_model,
        language=settings.transcription_language or None,
        max_bytes=settings.transcription_max_bytes,
        chunk_seconds=settings.transcription_chunk_seconds,
        words_per_segment=settings.degraded_words_per_segment,
        estimated_duration=settings.degraded_estimated_duration,
    )
