"""Application configuration from environment variables."""

from pydantic import model_validator
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Database
    database_url: str = "sqlite:///./strava_fitness.db"

    # Strava
    strava_client_id: str = ""
    strava_client_secret: str = ""
    strava_redirect_uri: str = "http://localhost:8000/api/v1/auth/strava/callback"
    strava_access_token: str = ""
    strava_refresh_token: str = ""

    # Athlete physiology (used for TRIMP / HRSS / zones)
    athlete_resting_hr: float = 50
    athlete_max_hr: float = 185
    athlete_threshold_hr: float = 165

    # Strava rate limits: 100 requests per 15 minutes, 1000 per day
    rate_limit_short: int = 100
    rate_limit_short_window_seconds: float = 900
    rate_limit_daily: int = 1000
    rate_limit_daily_window_seconds: float = 86400
    rate_limit_min_interval_seconds: float = 0.15

    # Sync
    summary_page_size: int = 200  # Max allowed by Strava
    stream_batch_size: int = 50
    stream_concurrency: int = 1
    progress_buffer_size: int = 256
    http_timeout_seconds: float = 30.0

    # Logging
    log_dir: str = "logs"
    log_level: str = "INFO"

    # App settings
    app_name: str = "Strava Fitness"
    debug: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @model_validator(mode="after")
    def check_heart_rates(self) -> "Settings":
        if self.athlete_resting_hr >= self.athlete_max_hr:
            raise ValueError(
                f"athlete_resting_hr ({self.athlete_resting_hr}) must be less than "
                f"athlete_max_hr ({self.athlete_max_hr})"
            )
        if self.athlete_threshold_hr >= self.athlete_max_hr:
            raise ValueError(
                f"athlete_threshold_hr ({self.athlete_threshold_hr}) must be less than "
                f"athlete_max_hr ({self.athlete_max_hr})"
            )
        return self


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
