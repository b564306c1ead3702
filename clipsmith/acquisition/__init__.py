# Media acquisition
from clipsmith.acquisition.chain import (
    AcquiredAudio,
    AcquiredVideo,
    AcquisitionChain,
    MediaAcquisition,
    build_media_acquisition,
)
from clipsmith.acquisition.sources import SourceRef, parse_source, upload_source

__all__ = [
    "AcquiredAudio",
    "AcquiredVideo",
    "AcquisitionChain",
    "MediaAcquisition",
    "build_media_acquisition",
    "SourceRef",
    "parse_source",
    "upload_source",
]
