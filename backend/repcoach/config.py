"""Engine configuration."""

import logging
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # Application
    app_name: str = "RepCoach"
    debug: bool = False
    log_level: str = "INFO"

    # Landmark gating
    min_landmark_visibility: float = 0.5  # Same cut-off the overlay uses for drawing joints

    # Feature smoothing
    default_smoothing_window: int = 5  # ~170ms at 30fps

    # Exercise definitions
    definitions_dir: Optional[str] = None  # Extra JSON definitions on top of the bundled catalog

    # Voice cues
    announce_rep_counts: bool = True

    class Config:
        env_file = ".env"
        env_prefix = "REPCOACH_"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging for a host process."""
    settings = settings or get_settings()
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
