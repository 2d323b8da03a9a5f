"""Client configuration: environment-driven settings resolved once at startup.

Settings are read from the ``DOCKER_*`` environment variables and may be
overridden by the global command-line options. The resulting object is
threaded through every command instead of being consulted as global state.

Examples
--------
Override via environment::

    export DOCKER_HOST=tcp://127.0.0.1:2375
    export DOCKER_CONTENT_TRUST=1
    export DOCKER_CONTENT_TRUST_SERVER=https://notary.example.com:4443
"""

from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.types import DEFAULT_API_VERSION, DEFAULT_HOST, EngineConfig

DEFAULT_CONTEXT = "default"


def _default_config_dir() -> Path:
    return Path.home() / ".docker"


class ClientSettings(BaseSettings):
    """Settings with ``DOCKER_*`` environment variable overrides."""

    model_config = SettingsConfigDict(
        env_prefix="DOCKER_",
        populate_by_name=True,
        frozen=True,
    )

    host: str = DEFAULT_HOST
    api_version: str = DEFAULT_API_VERSION
    config_dir: Path = Field(
        default_factory=_default_config_dir,
        validation_alias=AliasChoices("config_dir", "DOCKER_CONFIG"),
    )
    context: str = ""

    # Content trust
    content_trust: bool = False
    content_trust_server: str = ""

    # Logging
    log_level: str = "WARNING"
    debug: bool = False

    @field_validator("content_trust", mode="before")
    @classmethod
    def _empty_is_false(cls, value):
        if isinstance(value, str) and not value.strip():
            return False
        return value

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def trust_dir(self) -> Path:
        return self.config_dir / "trust"

    def engine_config(self) -> EngineConfig:
        return EngineConfig(host=self.host, api_version=self.api_version)
