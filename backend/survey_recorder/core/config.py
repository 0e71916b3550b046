from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

MEGABYTE = 1024 * 1024


class Settings(BaseSettings):
    """Service settings, read from the environment (or a local .env file)."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    app_name: str = "Survey Recorder API"
    app_version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = 4000

    # Storage
    recordings_dir: Path = Path("./recordings")
    logs_dir: Path = Path("./logs")
    ledger_lookback_days: int = 7

    # Upload limits
    max_duration_sec: int = 30
    max_file_mb: int = 10
    max_transcode_mb: int = 50

    # HTTP
    allowed_origins: str = "http://localhost:5173,http://localhost:8080"
    rate_limit_max: int = 100
    rate_limit_window_ms: int = 15 * 60 * 1000

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    ffmpeg_bin: str = "ffmpeg"

    @property
    def max_file_size(self) -> int:
        return self.max_file_mb * MEGABYTE

    @property
    def max_transcode_size(self) -> int:
        return self.max_transcode_mb * MEGABYTE

    @property
    def max_duration_ms(self) -> int:
        return self.max_duration_sec * 1000

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


settings = Settings()
