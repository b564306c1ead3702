"""Media providers for the acquisition fallback chain.

Every provider implements one capability: given a source, return something
the chain can turn into local bytes (a direct URL, raw bytes, or a file
already on disk). Providers never validate payload size; the chain does.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import httpx

from clipsmith.acquisition.sources import SourceRef
from clipsmith.models.job import SourceKind
from clipsmith.utils.ffmpeg import extract_audio
from clipsmith.utils.ytdlp import download_media

logger = logging.getLogger(__name__)

AUDIO = "audio"
VIDEO = "video"
VIDEO_SUFFIXES = (".mp4", ".mov", ".mkv", ".webm")


class ProviderError(Exception):
    """A provider could not produce media for this source."""
    pass


@dataclass
class FetchRequest:
    """Everything a provider may need for one attempt."""
    kind: str  # AUDIO or VIDEO
    workdir: Path
    client: httpx.AsyncClient
    section: Optional[Tuple[float, float]] = None


@dataclass
class FetchedMedia:
    """Provider output. Exactly one of url, data, path is set."""
    url: Optional[str] = None
    data: Optional[bytes] = None
    path: Optional[Path] = None
    suffix: Optional[str] = None
    # Source time at which the returned media starts
    offset: float = 0.0


class MediaProvider:
    """Base class for acquisition providers."""

    name = "provider"
    kinds = (AUDIO, VIDEO)
    source_kinds = (SourceKind.YOUTUBE,)
    requires_credentials = False

    def is_available(self) -> bool:
        """False when credentials this provider needs are missing."""
        return True

    def supports(self, source: SourceRef, request: FetchRequest) -> bool:
        return request.kind in self.kinds and source.kind in self.source_kinds

    async def fetch(self, source: SourceRef, request: FetchRequest) -> FetchedMedia:
        raise NotImplementedError

    def __repr__(self):
        return f"<{type(self).__name__}({self.name})>"


def cached_source_file(workdir: Path) -> Optional[Path]:
    """A full-length source video already present in the workspace."""
    for suffix in VIDEO_SUFFIXES:
        candidate = workdir / f"source{suffix}"
        if candidate.exists():
            return candidate
    return None


class LocalFileProvider(MediaProvider):
    """Serves uploads and source files already downloaded into the workspace."""

    name = "local-file"
    source_kinds = (SourceKind.UPLOAD, SourceKind.DIRECT_URL, SourceKind.YOUTUBE)

    def _local_path(self, source: SourceRef, workdir: Path) -> Optional[Path]:
        if source.kind == SourceKind.UPLOAD and source.path is not None:
            return source.path
        return cached_source_file(workdir)

    def supports(self, source: SourceRef, request: FetchRequest) -> bool:
        if not super().supports(source, request):
            return False
        path = self._local_path(source, request.workdir)
        return path is not None and path.exists()

    async def fetch(self, source: SourceRef, request: FetchRequest) -> FetchedMedia:
        path = self._local_path(source, request.workdir)
        if request.kind == VIDEO:
            return FetchedMedia(path=path)
        extracted = await extract_audio(path, request.workdir / "audio.mp3")
        return FetchedMedia(path=extracted)


class DirectUrlProvider(MediaProvider):
    """Plain http(s) media URLs."""

    name = "direct-url"
    source_kinds = (SourceKind.DIRECT_URL,)

    async def fetch(self, source: SourceRef, request: FetchRequest) -> FetchedMedia:
        suffix = Path(httpx.URL(source.url).path).suffix.lower() or ".mp4"
        if request.kind == VIDEO:
            return FetchedMedia(url=source.url, suffix=suffix)

        # Keep the full file as source.* so the video stage can reuse it
        source_path = request.workdir / f"source{suffix if suffix in VIDEO_SUFFIXES else '.mp4'}"
        await stream_to_file(request.client, source.url, source_path)
        extracted = await extract_audio(source_path, request.workdir / "audio.mp3")
        return FetchedMedia(path=extracted)


async def stream_to_file(client: httpx.AsyncClient, url: str, dest: Path) -> Path:
    """Download a URL to disk, raising on non-2xx."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    async with client.stream("GET", url, follow_redirects=True) as response:
        if response.status_code // 100 != 2:
            raise ProviderError(f"HTTP {response.status_code} fetching media")
        with open(dest, "wb") as f:
            async for chunk in response.aiter_bytes():
                f.write(chunk)
    return dest


class RapidApiProvider(MediaProvider):
    """Base for RapidAPI download endpoints keyed by video id."""

    host = ""
    requires_credentials = True

    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def _lookup(self, source: SourceRef, client: httpx.AsyncClient) -> dict:
        response = await client.get(
            f"https://{self.host}/dl",
            params={"id": source.video_id},
            headers={
                "x-rapidapi-key": self.api_key,
                "x-rapidapi-host": self.host,
            },
        )
        if response.status_code // 100 != 2:
            raise ProviderError(f"HTTP {response.status_code} from {self.host}")
        payload = response.json()
        if not isinstance(payload, dict):
            raise ProviderError("malformed response")
        return payload

    @staticmethod
    def _pick_format(formats, mime_prefix: str) -> Optional[dict]:
        for fmt in formats or []:
            if not isinstance(fmt, dict):
                continue
            if str(fmt.get("mimeType", "")).startswith(mime_prefix) and fmt.get("url"):
                return fmt
        return None

    def _media_from_payload(self, payload: dict, kind: str) -> FetchedMedia:
        if kind == AUDIO:
            fmt = self._pick_format(payload.get("adaptiveFormats"), "audio/")
            suffix = ".webm" if fmt and "webm" in fmt.get("mimeType", "") else ".m4a"
        else:
            # Progressive formats carry audio and video in one file
            fmt = self._pick_format(payload.get("formats"), "video/mp4")
            suffix = ".mp4"
        if fmt is None:
            raise ProviderError(f"no {kind} format in response")
        return FetchedMedia(url=fmt["url"], suffix=suffix)

    async def fetch(self, source: SourceRef, request: FetchRequest) -> FetchedMedia:
        payload = await self._lookup(source, request.client)
        return self._media_from_payload(payload, request.kind)


class YoutubeMp36Provider(RapidApiProvider):
    name = "youtube-mp36"
    host = "youtube-mp36.p.rapidapi.com"
    kinds = (AUDIO,)

    def _media_from_payload(self, payload: dict, kind: str) -> FetchedMedia:
        if payload.get("status") != "ok" or not payload.get("link"):
            raise ProviderError(f"status={payload.get('status')!r} {payload.get('msg', '')}".strip())
        return FetchedMedia(url=payload["link"], suffix=".mp3")


class YtStreamProvider(RapidApiProvider):
    name = "ytstream"
    host = "ytstream-download-youtube-videos.p.rapidapi.com"

    def _media_from_payload(self, payload: dict, kind: str) -> FetchedMedia:
        if payload.get("status") != "OK":
            raise ProviderError(f"status={payload.get('status')!r}")
        return super()._media_from_payload(payload, kind)


class YtApiProvider(RapidApiProvider):
    name = "yt-api"
    host = "yt-api.p.rapidapi.com"


class CobaltProvider(MediaProvider):
    """One cobalt instance."""

    def __init__(self, instance: str):
        self.instance = instance.rstrip("/")
        self.name = f"cobalt({httpx.URL(self.instance).host})"

    async def fetch(self, source: SourceRef, request: FetchRequest) -> FetchedMedia:
        is_audio = request.kind == AUDIO
        response = await request.client.post(
            f"{self.instance}/api/json",
            headers={"Accept": "application/json"},
            json={
                "url": source.fetch_url,
                "vCodec": "h264",
                "vQuality": "720",
                "aFormat": "mp3",
                "isAudioOnly": is_audio,
                "isNoTTWatermark": True,
                "disableMetadata": False,
            },
        )
        if response.status_code // 100 != 2:
            raise ProviderError(f"HTTP {response.status_code}")
        payload = response.json()
        if not isinstance(payload, dict):
            raise ProviderError("malformed response")
        if payload.get("status") == "error" or not payload.get("url"):
            raise ProviderError(payload.get("text") or "no download url")
        return FetchedMedia(url=payload["url"], suffix=".mp3" if is_audio else ".mp4")


class YtdlpProvider(MediaProvider):
    """yt-dlp subprocess, optionally authenticated with a cookies file."""

    source_kinds = (SourceKind.YOUTUBE, SourceKind.DIRECT_URL)

    def __init__(self, cookies_file: Optional[Path] = None, require_cookies: bool = False):
        self.cookies_file = Path(cookies_file) if cookies_file else None
        self.requires_credentials = require_cookies
        self.name = "yt-dlp+cookies" if require_cookies else "yt-dlp"

    def is_available(self) -> bool:
        if not self.requires_credentials:
            return True
        return self.cookies_file is not None and self.cookies_file.exists()

    async def fetch(self, source: SourceRef, request: FetchRequest) -> FetchedMedia:
        cookies = self.cookies_file if self.requires_credentials else None
        if request.kind == AUDIO:
            path = await download_media(
                source.fetch_url, request.workdir, filename="audio",
                audio_only=True, cookies_file=cookies,
            )
            return FetchedMedia(path=path)

        filename = "section" if request.section else "source"
        path = await download_media(
            source.fetch_url, request.workdir, filename=filename,
            section=request.section, cookies_file=cookies,
        )
        offset = request.section[0] if request.section else 0.0
        return FetchedMedia(path=path, offset=offset)
