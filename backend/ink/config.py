"""Process-level configuration from environment variables.

All fields have defaults, so no .env file is required. Directory fields
left unset are derived from ``ink_home`` (``~/.ink`` by default):

    <ink_home>/plans      one BackupPlan JSON per disc
    <ink_home>/metadata   one DiscMetadata JSON per scanned disc
    <ink_home>/staging    per-disc stage directories and markers

``SMB_TARGET``, ``SMB_USER`` and ``SMB_PASSWORD`` configure the copy stage only.
"""

from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline settings. Loaded from environment variables; optionally from .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage roots
    ink_home: Path = Path.home() / ".ink"
    staging_path: Path | None = None
    plans_path: Path | None = None
    metadata_path: Path | None = None

    # Scheduling
    debounce_seconds: float = 1.0
    drive_poll_interval: float = 3.0
    fallback_interval: float = 30.0

    # External tools
    makemkv_path: str = "makemkvcon"
    ffmpeg_path: str = "ffmpeg"
    smbclient_path: str = "smbclient"
    video_player: str = "vlc"

    # Copy target
    smb_target: str = "smb://192.168.1.200/storage/media"
    smb_user: str = "user"
    smb_password: str = "password"

    # Daemon
    host: str = "127.0.0.1"
    port: int = 3142
    debug: bool = False

    @model_validator(mode="after")
    def _derive_paths(self) -> "Settings":
        home = self.ink_home.expanduser()
        self.ink_home = home
        if self.staging_path is None:
            self.staging_path = home / "staging"
        if self.plans_path is None:
            self.plans_path = home / "plans"
        if self.metadata_path is None:
            self.metadata_path = home / "metadata"
        return self


settings = Settings()
