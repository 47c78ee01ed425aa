"""Configuration management for pveterm.

Loads settings from a YAML configuration file with environment variable
overrides for sensitive values (passwords). Supports .env files.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/pveterm.yaml")


class ConsoleConfig(BaseModel):
    ping_interval: float = Field(default=120.0, gt=0, description="Seconds between keepalive pings")
    read_chunk_size: int = Field(default=4096, gt=0)
    handshake_timeout: float = Field(default=10.0, gt=0)
    open_timeout: float = Field(default=10.0, gt=0)
    api_timeout: float = Field(default=30.0, gt=0)
    wake_prompt: bool = Field(default=True, description="Send a newline once the session is up")


class LoggingConfig(BaseModel):
    # Anything chattier than WARNING would scribble over the remote screen
    level: str = Field(default="WARNING")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for pveterm.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "PVETERM_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # Cluster
    server: str = Field(default="https://localhost:8006")
    verify_tls: bool = Field(default=True)

    # Credentials
    username: str | None = Field(default=None)
    password: SecretStr = Field(default=SecretStr(""))
    token_id: str | None = Field(default=None, description="API token id, e.g. root@pam!pveterm")

    # Configuration sections
    console: ConsoleConfig = Field(default_factory=ConsoleConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs; the environment must win over them
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @property
    def default_username(self) -> str | None:
        """Configured username, or the user part of the token id."""
        if self.username:
            return self.username
        if self.token_id:
            return self.token_id.split("!", 1)[0]
        return None


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    return Settings(**yaml_data)
