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
    app_name: str = "Reelsmith"
    debug: bool = True

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/reelsmith.db"

    # Data directories
    data_dir: Path = Path("./data")
    storage_dir: Path = Path("./data/storage")  # Local object store root
    work_dir: Path = Path("./data/work")  # Per-job scratch space

    # Object storage
    storage_bucket: str = "reelsmith-assets"
    storage_signing_key: str = "change-me"
    public_base_url: str = "http://localhost:8000"
    source_handle_ttl_seconds: int = 4 * 60 * 60
    artifact_handle_ttl_seconds: int = 7 * 24 * 60 * 60
    temp_audio_handle_ttl_seconds: int = 60 * 60
    temp_audio_grace_seconds: float = 60 * 60  # Delete extracted audio after this

    # Job orchestration
    max_concurrent_jobs: int = 2
    admission_tick_seconds: float = 1.0  # Fallback admission scan
    job_retention_hours: float = 24.0
    job_sweep_interval_seconds: float = 60 * 60
    combined_video_threshold_seconds: int = 120  # target >= this -> combined video
    min_target_duration: int = 20
    max_target_duration: int = 1800
    max_user_prompt_length: int = 500

    # Content classification
    speech_content_types: List[str] = ["talking_video"]

    # Credits
    credits_per_hour_speech: int = 20
    credits_per_hour_visual: int = 40

    # Gemini
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    genai_poll_attempts: int = 30
    genai_poll_interval_seconds: float = 2.0

    # FFmpeg settings
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Export settings
    export_video_codec: str = "libx264"
    export_video_preset: str = "fast"
    export_video_profile: str = "main"
    export_video_crf: int = 23
    export_video_maxrate: str = "4M"
    export_video_bufsize: str = "8M"
    export_video_fps: int = 30
    export_video_gop: int = 60
    export_audio_codec: str = "aac"
    export_audio_bitrate: str = "128k"
    export_audio_sample_rate: int = 48000

    # Black canvas fallback, used when the source has no video stream
    fallback_canvas_width: int = 1280
    fallback_canvas_height: int = 720

    # Audio extraction for speech-dominant sources
    audio_extract_sample_rate: int = 16000
    audio_extract_bitrate: str = "64k"

    # Thumbnail settings
    thumbnail_width: int = 640
    thumbnail_height: int = 360
    thumbnail_offset_seconds: float = 1.0

    # Frontend
    frontend_url: str = "http://localhost:3000"


settings = Settings()

# Ensure directories exist
settings.data_dir.mkdir(parents=True, exist_ok=True)
settings.storage_dir.mkdir(parents=True, exist_ok=True)
settings.work_dir.mkdir(parents=True, exist_ok=True)
settings.storage_dir.mkdir(parents=True, exist_ok=True)
settings.work_dir.mkdir(parents=True, exist_ok=True)
