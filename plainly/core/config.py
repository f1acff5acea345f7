"""
Application configuration via pydantic-settings.

Loads values from .env file with sensible defaults for local development.
Use ``get_settings()`` to obtain the cached singleton instance.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Plainly settings loaded from environment / .env file.

    All settings can be overridden via environment variables or a `.env` file.
    Field names map directly to env var names (case-insensitive).

    The timing constants below were tuned empirically on devices; treat them
    as deployment policy rather than fixed behaviour.

    Attributes:
        max_duration_seconds: Hard cap on a single capture (auto-stop).
        stage_min_display_seconds: Display floor for each of the 4 pipeline stages.
        processing_base_url: Base URL of the remote transcribe/extract backend.
        database_url: Async SQLAlchemy connection string for SQLite.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Silently ignore unrecognized env vars
    )

    # --- Capture session ---
    max_duration_seconds: float = 600.0
    duration_warning_fraction: float = 0.9  # DurationWarning fires once past this share of the cap
    tick_interval_seconds: float = 0.5
    mic_grace_period_seconds: float = 5.0  # MicInterrupted -> MicLost

    # Device start is retried with exponential backoff: 0.2s, 0.4s, 0.8s
    device_start_max_retries: int = 3
    device_start_backoff_seconds: float = 0.2
    device_start_backoff_max_seconds: float = 2.0

    # --- Processing pipeline ---
    # Listening back, Transcribing, Summarizing, Finishing touches
    stage_min_display_seconds: list[float] = [2.0, 2.0, 2.0, 1.5]
    stage_gap_seconds: float = 0.2
    finish_delay_seconds: float = 0.8
    slow_notice_seconds: float = 15.0  # "Taking longer than usual"
    background_notice_seconds: float = 30.0  # "Continue in background"

    # --- Remote processing services ---
    processing_base_url: str = "http://localhost:3001"
    processing_timeout_seconds: float = 120.0

    # --- Audio format accepted by the stream capture device ---
    sample_rate: int = 16000
    sample_width: int = 2
    channels: int = 1

    # --- Application ---
    app_host: str = "0.0.0.0"  # Bind address for the FastAPI server
    app_port: int = 8000
    log_level: str = "INFO"  # Python logging level
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8081"]

    # --- Storage ---
    # Paths are relative to the project root; absolute paths also supported
    database_url: str = "sqlite+aiosqlite:///data/plainly.db"
    recordings_dir: str = "data/recordings"  # WAV file storage directory


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings singleton.

    Uses ``functools.lru_cache`` so the .env file is read only once.
    Subsequent calls return the same ``Settings`` instance.

    Returns:
        Settings: The application-wide configuration object.
    """
    return Settings()
