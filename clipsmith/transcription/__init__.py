# Speech-to-text
from clipsmith.transcription.adapter import (
    TranscriptionAdapter,
    build_transcription_adapter,
    merge_chunk_segments,
    synthesize_segments,
)

__all__ = [
    "TranscriptionAdapter",
    "build_transcription_adapter",
    "merge_chunk_segments",
    "synthesize_segments",
]
