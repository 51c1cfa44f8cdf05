"""Configuration management for the debug agent recorder and replayer."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="DEBUG_AGENT_",
        extra="ignore"
    )

    # Paths
    recordings_dir: str = Field("./recordings", description="Default directory for recordings")
    extension_path: Optional[str] = Field(
        None,
        description="Unpacked Chrome extension loaded into the recording browser",
    )

    # Network control side channel (browser extension)
    control_enabled: bool = Field(True, description="Start the network control server while recording")
    control_host: str = Field("localhost", description="Network control server host")
    control_port: int = Field(9229, description="Network control server port")
    control_path: str = Field("/debug-agent", description="Network control websocket path")

    # Capture Settings
    mousemove_throttle_ms: int = Field(50, description="Minimum gap between recorded mouse moves")
    scroll_debounce_ms: int = Field(100, description="Quiet period before a scroll position is recorded")
    refresh_min_interval_ms: int = Field(
        500,
        description="Minimum gap between loads of the same URL to count as a refresh",
    )
    close_grace_ms: int = Field(100, description="Delay before signalling the end of a session")
    default_viewport_width: int = Field(1280, description="Viewport width when the page reports none")
    default_viewport_height: int = Field(720, description="Viewport height when the page reports none")

    # Replay Settings
    replay_max_delay_ms: int = Field(3000, description="Upper bound for the wait between two events")
    min_speed: float = Field(0.1, description="Lower bound applied to the speed multiplier")
    navigation_timeout_ms: int = Field(60000, description="Timeout for replayed navigations")
    browser_args: list[str] = Field(
        default_factory=lambda: [
            "--disable-gpu",
            "--disable-software-rasterizer",
            "--disable-dev-shm-usage",
            "--no-sandbox",
        ],
        description="Extra Chromium arguments for replay",
    )

    # Logging
    log_level: str = Field("INFO", description="Log level")
    log_json: bool = Field(False, description="Render logs as JSON")


def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
