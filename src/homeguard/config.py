"""Application configuration via environment variables and .env file."""

from pathlib import Path
from typing import Annotated

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode
from pydantic_settings.sources import DotEnvSettingsSource, PydanticBaseSettingsSource

# Path to .env file (patch in tests to use tmp_path / ".env")
_ENV_FILE: Path = Path(".env")

PEER_MODES = ("http", "mock", "none")


class Settings(BaseSettings):
    model_config = {
        "env_prefix": "HOMEGUARD_",
        "env_file_encoding": "utf-8",
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Load .env from _ENV_FILE (patchable in tests)
        return (
            init_settings,
            env_settings,
            DotEnvSettingsSource(
                settings_cls,
                env_file=_ENV_FILE,
                env_file_encoding="utf-8",
            ),
            file_secret_settings,
        )

    # Database
    db_path: Path = Path("./data/homeguard.db")

    # Logging
    log_level: str = "info"

    # Peer
    # Env: HOMEGUARD_PEER_MODE="mock" runs against the in-process simulated firmware
    peer_mode: str = "http"
    peer_host: str = "192.168.4.1"
    peer_scheme: str = "http"
    peer_token: SecretStr | None = None
    peer_secret: SecretStr | None = None

    # Rolling code
    code_window: int = 10  # seconds per code
    code_digits: int = 6

    # Transport / retry
    request_timeout: float = 5.0
    retry_attempts: int = 3  # retries after the first attempt
    retry_base_delay: float = 0.5
    retry_backoff_factor: float = 2.0
    retry_max_delay: float = 8.0
    # Env: HOMEGUARD_RETRY_SAFE_ACTIONS="on,off,open,close"
    retry_safe_actions: Annotated[list[str], NoDecode] = [
        "on",
        "off",
        "open",
        "close",
        "status",
        "setColor",
    ]

    # Polling
    sensor_poll_interval: int = 2  # seconds between sensor reads
    connection_check_interval: int = 5  # seconds between /ping probes
    reading_history_size: int = 50

    # Authentication for the local API (optional, omit to disable)
    auth_username: str = "admin"
    auth_password: str | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    @field_validator("peer_mode", mode="before")
    @classmethod
    def parse_peer_mode(cls, v: object) -> str:
        mode = str(v or "none").strip().lower()
        if mode not in PEER_MODES:
            raise ValueError(f"peer_mode must be one of {PEER_MODES}, got {mode!r}")
        return mode

    @field_validator("retry_safe_actions", mode="before")
    @classmethod
    def parse_retry_safe_actions(cls, v: object) -> list[str]:
        """Parse comma-separated string or list."""
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        if isinstance(v, list):
            return [s for s in v if s]
        return []

    @property
    def peer_base_url(self) -> str:
        host = self.peer_host.strip().rstrip("/")
        if host.startswith(("http://", "https://")):
            return host
        return f"{self.peer_scheme}://{host}"

    def has_peer_credentials(self) -> bool:
        """True when both the static token and the rolling-code secret are set."""
        return bool(
            self.peer_token
            and self.peer_token.get_secret_value()
            and self.peer_secret
            and self.peer_secret.get_secret_value()
        )


def load_config() -> Settings:
    """Load configuration from .env and environment (env overrides .env)."""
    return Settings()


settings = Settings()
