"""Application configuration."""
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8"
    )

    # App settings
    app_name: str = "Clipsmith"
    debug: bool = False

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/clipsmith.db"

    # Data directories
    data_dir: Path = Path("./data")
    workspace_dir: Path = Path("./data/workspaces")

    # Working directories are removed this long after a job completes
    cleanup_delay_seconds: float = 600.0

    # External tools
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    ytdlp_path: str = "yt-dlp"
    ytdlp_cookies_file: Optional[Path] = None
    subprocess_timeout_seconds: float = 300.0

    # Media acquisition
    http_timeout_seconds: float = 120.0
    http_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )
    min_media_bytes: int = 10_000  # Anything smaller is an error page, not media
    rapidapi_key: Optional[str] = None
    cobalt_instances: List[str] = [
        "https://api.cobalt.tools",
        "https://cobalt-api.kwiatekmiki.com",
        "https://cobalt.api.timelessnesses.me",
    ]

    # Transcription
    groq_api_key: Optional[str] = None
    transcription_model: str = "whisper-large-v3-turbo"
    transcription_language: str = "en"
    transcription_max_bytes: int = 25 * 1024 * 1024
    transcription_chunk_seconds: float = 300.0
    degraded_words_per_segment: int = 20
    degraded_estimated_duration: float = 300.0

    # Highlight selection
    highlight_step_fraction: float = 0.5
    default_clip_duration: float = 60.0
    default_max_clips: int = 5

    # Export settings
    export_video_codec: str = "libx264"
    export_video_preset: str = "fast"
    export_video_crf: int = 20
    export_audio_codec: str = "aac"
    export_audio_bitrate: str = "192k"

    # Thumbnail settings
    thumbnail_width: int = 320
    thumbnail_height: int = 180
    thumbnail_format: str = "jpg"

    # Uploads
    max_upload_bytes: int = 500 * 1024 * 1024

    # Frontend
    frontend_url: str = "http://localhost:3000"


settings = Settings()

# Ensure directories exist
settings.data_dir.mkdir(parents=True, exist_ok=True)
settings.workspace_dir.mkdir(parents=True, exist_ok=True)
