"""
Centralized configuration management using Pydantic Settings.

Configuration is loaded from environment variables with sensible defaults.
"""

from typing import Optional

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class VADConfig(BaseSettings):
    """Energy-based voice activity detection thresholds."""

    model_config = SettingsConfigDict(env_prefix="SHELFSCOUT_VAD_", env_file=".env", extra="ignore")

    silence_threshold_ms: int = Field(
        default=1500,
        ge=1,
        description="Silence run (ms) after speech that ends the utterance",
    )
    min_pause_threshold_ms: int = Field(
        default=500,
        ge=0,
        description="Silence runs shorter than this are mid-utterance pauses",
    )
    speech_threshold_db: float = Field(
        default=-35.0,
        description="Level (dB) above which a sample counts as speech",
    )
    silence_threshold_db: float = Field(
        default=-42.0,
        description="Level (dB) below which a sample counts as silence",
    )
    sampling_interval_ms: int = Field(
        default=100,
        ge=10,
        description="How often the level source is sampled",
    )

    @field_validator("silence_threshold_db")
    @classmethod
    def validate_hysteresis(cls, v: float, info: ValidationInfo) -> float:
        """Silence threshold must sit strictly below the speech threshold."""
        speech = info.data.get("speech_threshold_db")
        if speech is not None and v >= speech:
            raise ValueError(
                f"silence_threshold_db ({v}) must be below "
                f"speech_threshold_db ({speech})"
            )
        return v


class ListeningConfig(BaseSettings):
    """Speech session and auto-submit behaviour."""

    model_config = SettingsConfigDict(env_prefix="SHELFSCOUT_LISTENING_", env_file=".env", extra="ignore")

    enable_auto_submit: bool = Field(default=True, description="Submit automatically at end of utterance")
    enable_rms_vad: bool = Field(default=True, description="Run the energy VAD alongside the recognizer")
    language: str = Field(default="en-US", description="Recognizer language")
    restart_delay_ms: int = Field(
        default=100,
        ge=0,
        description="Pause between tearing down a stale recognizer and starting a new one",
    )


class InterruptConfig(BaseSettings):
    """Emergency stop behaviour."""

    model_config = SettingsConfigDict(env_prefix="SHELFSCOUT_INTERRUPT_", env_file=".env", extra="ignore")

    settle_delay_ms: int = Field(
        default=300,
        ge=0,
        description="Time given to asynchronous stop calls before state is reset",
    )


class ContinuousModeConfig(BaseSettings):
    """Navigation / reaching loop limits."""

    model_config = SettingsConfigDict(env_prefix="SHELFSCOUT_CONTINUOUS_", env_file=".env", extra="ignore")

    enabled: bool = Field(default=True, description="Allow the backend to start continuous loops")
    default_loop_delay_ms: int = Field(default=2500, ge=0, description="Delay between loop iterations")
    max_iterations: int = Field(default=300, ge=1, description="Hard cap on iterations per loop")
    min_request_interval_ms: int = Field(
        default=2000,
        ge=0,
        description="Minimum time between two loop requests",
    )
    loop_prompt: str = Field(
        default="(continuous mode)",
        description="Text sent with each loop iteration",
    )


class BackendConfig(BaseSettings):
    """Workflow backend connection."""

    model_config = SettingsConfigDict(env_prefix="SHELFSCOUT_BACKEND_", env_file=".env", extra="ignore")

    workflow_url: str = Field(
        default="http://localhost:5678/webhook/shelfscout",
        description="Workflow webhook receiving photo + transcript",
    )
    timeout_s: float = Field(default=60.0, gt=0, description="Request timeout in seconds")
    api_key: Optional[str] = Field(default=None, description="Bearer token for the workflow")


class Settings(BaseSettings):
    """Application-wide settings."""

    model_config = SettingsConfigDict(
        env_prefix="SHELFSCOUT_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # General
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    platform: str = Field(
        default="generic",
        description="Host platform profile: ios, android or generic",
    )
    device_id: Optional[str] = Field(
        default=None,
        description="Stable device label; seeds the first session id",
    )

    # Nested configs
    vad: VADConfig = Field(default_factory=VADConfig)
    listening: ListeningConfig = Field(default_factory=ListeningConfig)
    interrupt: InterruptConfig = Field(default_factory=InterruptConfig)
    continuous: ContinuousModeConfig = Field(default_factory=ContinuousModeConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)

    @field_validator("platform")
    @classmethod
    def validate_platform(cls, v: str) -> str:
        """Normalize the platform name."""
        v = v.strip().lower()
        if v not in ("ios", "android", "generic"):
            raise ValueError(f"Unknown platform '{v}'. Use ios, android or generic")
        return v


# Singleton settings instance
settings = Settings()
