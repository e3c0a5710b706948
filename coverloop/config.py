from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Coverloop API"
    app_version: str = "0.1.0"
    git_hash: str = "unknown"  # Set via GIT_HASH env var at build time
    log_level: str = "INFO"

    # Storage
    temp_dir: str = "/tmp/coverloop-work"
    output_dir: str = "/tmp/coverloop-output"
    # Base URL used when building video_url for completed jobs
    public_base_url: str = "http://localhost:8000"

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    ffmpeg_threads: int = 0  # 0 = let ffmpeg decide

    # Output settings
    target_duration_seconds: int = 1800
    output_width: int = 1920
    output_height: int = 1080
    audio_bitrate: str = "128k"
    audio_sample_rate: int = 48000
    default_encode_preset: Literal["fast", "balanced", "quality"] = "fast"

    # Job scheduling
    max_concurrent_jobs: int = 3
    terminate_on_cancel: bool = True
    # Exact number of songs a request must carry. 0 = any non-empty playlist.
    required_track_count: int = 0

    # Downloads
    download_batch_size: int = 10
    download_timeout_seconds: float = 120.0
    max_download_size_mb: int = 500
    user_agent: str = "Mozilla/5.0 (compatible; Coverloop/0.1)"

    # Notifications (optional)
    webhook_url: str | None = None
    webhook_timeout_seconds: float = 10.0

    @computed_field
    @property
    def max_download_size_bytes(self) -> int:
        return self.max_download_size_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    return Settings()
