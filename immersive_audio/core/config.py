"""
Configuration management for the immersive audio pipeline.
Loads settings from environment variables.
"""

from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "immersive-audio"
    app_version: str = "0.1.0"
    env: Literal["development", "staging", "production"] = "development"
    debug: bool = True

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_allow_origins: list[str] = ["*"]
    cors_allow_credentials: bool = False

    # Speech input (the TTS service emits 24 kHz mono PCM16)
    speech_sample_rate: int = 24000
    speech_channels: int = 1

    # Effects graph
    dry_gain: float = 0.7
    wet_gain: float = 0.35
    impulse_duration: float = 2.5  # seconds
    impulse_decay: float = 2.0

    # 8D panning automation
    pan_hold_duration: float = 20.0  # seconds
    pan_transition_duration: float = 5.0  # seconds
    pan_poll_interval: float = 0.1  # seconds
    pan_smoothing: float = 0.1  # time constant, seconds

    # Output device
    block_size: int = 1024
    output_device: Optional[int] = None

    # Debug: compare live and offline renders on every load
    debug_equivalence_check: bool = False
    equivalence_tolerance: float = 1e-4

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    model_config = SettingsConfigDict(
        env_prefix="IMMERSIVE_AUDIO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env == "development"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """
    Get settings instance.
    Useful for dependency injection in FastAPI.
    """
    return settings
