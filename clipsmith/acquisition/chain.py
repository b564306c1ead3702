"""Acquisition fallback chain.

The upstream video host blocks programmatic access unpredictably, so media is
fetched by trying an ordered list of providers until one yields usable bytes.
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import httpx

from clipsmith.acquisition.providers import (
    AUDIO,
    VIDEO,
    CobaltProvider,
    DirectUrlProvider,
    FetchedMedia,
    FetchRequest,
    LocalFileProvider,
    MediaProvider,
    ProviderError,
    YoutubeMp36Provider,
    YtApiProvider,
    YtdlpProvider,
    YtStreamProvider,
    stream_to_file,
)
from clipsmith.acquisition.sources import SourceRef
from clipsmith.errors import AcquisitionExhausted
from clipsmith.utils.ffmpeg import FFmpegError
from clipsmith.utils.ytdlp import YtdlpError

logger = logging.getLogger(__name__)

# Failures that move the chain on to the next provider
PROVIDER_FAILURES = (
    ProviderError,
    httpx.HTTPError,
    YtdlpError,
    FFmpegError,
    asyncio.TimeoutError,
    OSError,
    ValueError,
    KeyError,
    TypeError,
    AttributeError,
)


@dataclass
class AcquiredAudio:
    data: bytes
    filename: str
    provider: str
    path: Path


@dataclass
class AcquiredVideo:
    path: Path
    provider: str
    # Source time at which this file starts (non-zero for section downloads)
    offset: float = 0.0


def default_client_factory(user_agent: str, timeout: float) -> Callable[[], httpx.AsyncClient]:
    """Client factory that identifies as a regular browser."""
    def factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={"User-Agent": user_agent},
            timeout=httpx.Timeout(timeout, connect=15.0),
            follow_redirects=True,
        )
    return factory


class AcquisitionChain:
    """Try providers in order and stop at the first usable result."""

    def __init__(
        self,
        providers: List[MediaProvider],
        client_factory: Callable[[], httpx.AsyncClient],
        min_bytes: int = 10_000,
    ):
        self.providers = list(providers)
        self.client_factory = client_factory
        self.min_bytes = min_bytes

    async def acquire(
        self,
        source: SourceRef,
        kind: str,
        workdir: Path,
        section: Optional[Tuple[float, float]] = None,
    ) -> Tuple[MediaProvider, Path, float]:
        """
        Run the chain for one media kind.

        Returns:
            Tuple of (winning provider, local file, source offset)

        Raises:
            AcquisitionExhausted: When no provider produced usable media
        """
        workdir = Path(workdir)
        workdir.mkdir(parents=True, exist_ok=True)
        failures: List[Tuple[str, str]] = []

        async with self.client_factory() as client:
            request = FetchRequest(kind=kind, workdir=workdir, client=client, section=section)

            for provider in self.providers:
                if not provider.is_available():
                    logger.debug(f"Skipping {provider.name}: credentials not configured")
                    continue
                if not provider.supports(source, request):
                    continue

                logger.info(f"Trying {provider.name} for {kind} of {source.describe()}")
                try:
                    media = await provider.fetch(source, request)
                    path = await self._materialize(media, request, provider)
                except PROVIDER_FAILURES as e:
                    reason = str(e) or type(e).__name__
                    logger.warning(f"{provider.name} failed for {kind}: {reason}")
                    failures.append((provider.name, reason))
                    continue

                logger.info(
                    f"Got {path.stat().st_size / 1024 / 1024:.2f} MB of {kind} via {provider.name}"
                )
                return provider, path, media.offset

        raise AcquisitionExhausted(kind, failures)

    async def _materialize(
        self,
        media: FetchedMedia,
        request: FetchRequest,
        provider: MediaProvider,
    ) -> Path:
        """Turn provider output into a validated local file."""
        created = False
        if media.path is not None:
            path = Path(media.path)
            if not path.exists():
                raise ProviderError(f"output file missing: {path.name}")
        elif media.data is not None:
            path = request.workdir / f"{request.kind}-download{media.suffix or ''}"
            path.write_bytes(media.data)
            created = True
        elif media.url:
            response_suffix = media.suffix or ""
            path = request.workdir / f"{request.kind}-download{response_suffix}"
            await stream_to_file(request.client, media.url, path)
            created = True
        else:
            raise ProviderError("provider returned nothing")

        size = path.stat().st_size
        if size < self.min_bytes:
            if created:
                path.unlink(missing_ok=True)
            raise ProviderError(f"undersized payload ({size} bytes)")
        return path


class MediaAcquisition:
    """Audio and video acquisition, each backed by its own provider chain."""

    def __init__(self, audio_chain: AcquisitionChain, video_chain: AcquisitionChain):
        self.audio_chain = audio_chain
        self.video_chain = video_chain

    async def acquire_audio(self, source: SourceRef, workdir: Path) -> AcquiredAudio:
        """Fetch the source's audio and store it as audio.<ext> in the workspace."""
        workdir = Path(workdir)
        for stale in workdir.glob("audio.*"):
            stale.unlink(missing_ok=True)

        provider, path, _ = await self.audio_chain.acquire(source, AUDIO, workdir)

        final = workdir / f"audio{path.suffix or '.mp3'}"
        if path != final:
            os.replace(path, final)
        for leftover in workdir.glob("audio.*"):
            if leftover != final:
                leftover.unlink(missing_ok=True)
        return AcquiredAudio(
            data=final.read_bytes(),
            filename=final.name,
            provider=provider.name,
            path=final,
        )

    async def acquire_video(
        self,
        source: SourceRef,
        workdir: Path,
        section: Optional[Tuple[float, float]] = None,
    ) -> AcquiredVideo:
        """Fetch the source video, or only ``section`` where a provider can."""
        provider, path, offset = await self.video_chain.acquire(source, VIDEO, workdir, section)
        return AcquiredVideo(path=path, provider=provider.name, offset=offset)


def default_audio_providers(settings) -> List[MediaProvider]:
    providers: List[MediaProvider] = [
        LocalFileProvider(),
        DirectUrlProvider(),
        YtdlpProvider(settings.ytdlp_cookies_file, require_cookies=True),
        YoutubeMp36Provider(settings.rapidapi_key),
        YtStreamProvider(settings.rapidapi_key),
        YtApiProvider(settings.rapidapi_key),
    ]
    providers += [CobaltProvider(instance) for instance in settings.cobalt_instances]
    providers.append(YtdlpProvider())
    return providers


def default_video_providers(settings) -> List[MediaProvider]:
    providers: List[MediaProvider] = [
        LocalFileProvider(),
        YtdlpProvider(settings.ytdlp_cookies_file, require_cookies=True),
    ]
    providers += [CobaltProvider(instance) for instance in settings.cobalt_instances]
    providers += [
        YtStreamProvider(settings.rapidapi_key),
        YtApiProvider(settings.rapidapi_key),
        DirectUrlProvider(),
        YtdlpProvider(),
    ]
    return providers


def build_media_acquisition(settings, client_factory=None) -> MediaAcquisition:
    """Wire the default provider chains from settings."""
    client_factory = client_factory or default_client_factory(
        settings.http_user_agent, settings.http_timeout_seconds
    )
    return MediaAcquisition(
        audio_chain=AcquisitionChain(
            default_audio_providers(settings), client_factory, settings.min_media_bytes
        ),
        video_chain=AcquisitionChain(
            default_video_providers(settings), client_factory, settings.min_media_bytes
        ),
    )
