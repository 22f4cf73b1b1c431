"""
Application configuration via pydantic-settings.

Loads values from environment variables / .env file with defaults that
match the container image. Use ``get_settings()`` to obtain the cached
singleton instance.
"""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """StreamVault settings loaded from environment / .env file.

    Field names map directly to env var names (case-insensitive), e.g.
    ``RECORD_DIR`` sets ``record_dir``.

    Attributes:
        record_dir: Directory receiving raw captures and derived artifacts.
        record_format: "ogg" keeps the codec-copy capture only, "mp3" also
            converts it after the recorder exits.
        post_convert_mp3: Explicit post-conversion toggle.
        keep_ogg: Keep the raw capture after a successful conversion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Silently ignore unrecognized env vars
    )

    # --- HTTP control plane ---
    app_host: str = "0.0.0.0"  # Bind address for the FastAPI server
    port: int = 3000
    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"  # Python logging level

    # --- Media routing ---
    media_router: str = "plain"  # Media router provider, see create_media_router()
    rtp_listen_ip: str = "0.0.0.0"
    rtp_port: int = 40000  # Media ingress UDP port
    announced_ip: str | None = None  # Public address handed to peers behind NAT
    transport_idle_timeout: float = 30.0  # Close peer transports silent this long (s); 0 disables

    # --- Recording ---
    record_dir: str = "/recordings"
    record_format: str = "ogg"  # "ogg" | "mp3"
    post_convert_mp3: bool = False
    record_bitrate: str = "160k"  # 128k / 160k / 192k
    keep_ogg: bool = True

    # --- External tools ---
    ffmpeg_binary: str = "ffmpeg"
    recorder_settle_delay: float = 0.15  # Seconds between recorder spawn and consumer resume
    recorder_stop_timeout: float = 10.0  # Seconds after SIGINT before SIGKILL; 0 waits forever
    min_capture_bytes: int = 8192  # Smaller captures are treated as empty
    mp3_sample_rate: int = 44100
    mp3_channels: int = 2

    @field_validator("record_format")
    @classmethod
    def _normalize_format(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("ogg", "mp3"):
            raise ValueError(f"record_format must be 'ogg' or 'mp3', got {value!r}")
        return value

    @property
    def post_conversion_enabled(self) -> bool:
        """True when captures should be transcoded to MP3 after recording."""
        return self.post_convert_mp3 or self.record_format == "mp3"


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings singleton.

    Uses ``functools.lru_cache`` so the .env file is read only once.

    Returns:
        Settings: The application-wide configuration object.
    """
    return Settings()
