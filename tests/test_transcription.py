"""Tests for the transcription adapter."""
from pathlib import Path
from types import SimpleNamespace

import pytest

from clipsmith.errors import TranscriptionError
from clipsmith.pipeline.transcript import TranscriptSegment
from clipsmith.transcription import adapter as adapter_module
from clipsmith.transcription.adapter import (
    TranscriptionAdapter,
    merge_chunk_segments,
    synthesize_segments,
)


class _FakeTranscriptions:
    def __init__(self, responses=None, error=None):
        self._responses = list(responses or [])
        self._error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self._error:
            raise self._error
        return self._responses.pop(0)


class _FakeClient:
    def __init__(self, responses=None, error=None):
        self.audio = SimpleNamespace(transcriptions=_FakeTranscriptions(responses, error))

    @property
    def calls(self):
        return self.audio.transcriptions.calls


def _adapter(client, **kwargs):
    return TranscriptionAdapter(client=client, **kwargs)


@pytest.mark.asyncio
async def test_transcribe_returns_ordered_segments(tmp_path):
    client = _FakeClient([{
        "text": "second first",
        "segments": [
            {"start": 5.0, "end": 9.0, "text": " second "},
            {"start": 0.0, "end": 5.0, "text": "first"},
        ],
    }])

    segments = await _adapter(client).transcribe(b"audio", "audio.mp3", tmp_path)

    assert [(s.index, s.start, s.text) for s in segments] == [(0, 0.0, "first"), (1, 5.0, "second")]
    call = client.calls[0]
    assert call["file"] == ("audio.mp3", b"audio")
    assert call["model"] == "whisper-large-v3-turbo"
    assert call["response_format"] == "verbose_json"
    assert call["language"] == "en"


@pytest.mark.asyncio
async def test_transcribe_accepts_sdk_objects(tmp_path):
    response = SimpleNamespace(
        text="hello",
        segments=[SimpleNamespace(start=1.0, end=2.5, text="hello")],
    )
    segments = await _adapter(_FakeClient([response])).transcribe(b"audio", "a.m4a", tmp_path)
    assert segments == [TranscriptSegment(index=0, start=1.0, end=2.5, text="hello")]


@pytest.mark.asyncio
async def test_text_only_response_is_synthesized_from_duration_hint(tmp_path):
    text = " ".join(f"w{i}" for i in range(45))
    client = _FakeClient([{"text": text, "segments": []}])

    segments = await _adapter(client, words_per_segment=20).transcribe(
        b"audio", "audio.mp3", tmp_path, duration_hint=90.0
    )

    assert len(segments) == 3
    assert [(s.start, s.end) for s in segments] == [(0.0, 30.0), (30.0, 60.0), (60.0, 90.0)]
    assert segments[2].text == "w40 w41 w42 w43 w44"


@pytest.mark.asyncio
async def test_text_only_response_falls_back_to_estimated_duration(tmp_path):
    client = _FakeClient([{"text": "a few words"}])
    segments = await _adapter(client, estimated_duration=300.0).transcribe(b"x", "a.mp3", tmp_path)
    assert len(segments) == 1
    assert segments[0].end == 300.0


@pytest.mark.asyncio
async def test_silent_audio_yields_no_segments(tmp_path):
    client = _FakeClient([{"text": "", "segments": []}])
    assert await _adapter(client).transcribe(b"x", "a.mp3", tmp_path) == []


@pytest.mark.asyncio
async def test_service_failure_raises_transcription_error(tmp_path):
    client = _FakeClient(error=RuntimeError("503 Service Unavailable"))
    with pytest.raises(TranscriptionError, match="503"):
        await _adapter(client).transcribe(b"x", "a.mp3", tmp_path)


@pytest.mark.asyncio
async def test_malformed_segment_raises_transcription_error(tmp_path):
    client = _FakeClient([{"segments": [{"start": "soon", "end": 1.0, "text": "x"}]}])
    with pytest.raises(TranscriptionError):
        await _adapter(client).transcribe(b"x", "a.mp3", tmp_path)


@pytest.mark.asyncio
async def test_missing_client_raises(tmp_path):
    with pytest.raises(TranscriptionError, match="not configured"):
        await _adapter(None).transcribe(b"x", "a.mp3", tmp_path)


@pytest.mark.asyncio
async def test_oversized_audio_is_chunked_and_reoffset(tmp_path, monkeypatch):
    async def fake_split(audio_path, output_dir, chunk_seconds):
        assert Path(audio_path).read_bytes() == b"x" * 100
        paths = []
        for i in range(3):
            path = Path(output_dir) / f"chunk_{i:03d}.mp3"
            path.write_bytes(b"chunk")
            paths.append(path)
        return paths

    monkeypatch.setattr(adapter_module, "split_audio", fake_split)
    chunk_reply = {"segments": [{"start": 0.0, "end": 4.0, "text": "hi"}]}
    client = _FakeClient([chunk_reply, chunk_reply, chunk_reply])

    segments = await _adapter(client, max_bytes=10, chunk_seconds=300.0).transcribe(
        b"x" * 100, "audio.mp3", tmp_path
    )

    assert [s.start for s in segments] == [0.0, 300.0, 600.0]
    assert [s.index for s in segments] == [0, 1, 2]
    assert [c["file"][0] for c in client.calls] == ["chunk_000.mp3", "chunk_001.mp3", "chunk_002.mp3"]


def test_merge_chunk_segments_shifts_by_chunk_position():
    chunks = [
        [TranscriptSegment(0, 0.0, 2.0, "a"), TranscriptSegment(1, 2.0, 4.0, "b")],
        [],
        [TranscriptSegment(0, 1.0, 3.0, "c")],
    ]
    merged = merge_chunk_segments(chunks, chunk_seconds=60.0)
    assert [(s.index, s.start, s.end, s.text) for s in merged] == [
        (0, 0.0, 2.0, "a"),
        (1, 2.0, 4.0, "b"),
        (2, 121.0, 123.0, "c"),
    ]


def test_synthesize_segments_empty_text():
    assert synthesize_segments("   ", 20, 100.0) == []
