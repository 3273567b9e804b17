"""Configuration for TaskCrafter."""

import os
from typing import Literal

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

SyncPolicy = Literal["ignore", "last_write_wins"]


class Config(BaseSettings):
    """Application configuration.

    Values come from init kwargs, then ``TASK_CRAFTER_*`` environment
    variables, then an optional YAML file (``TASK_CRAFTER_CONFIG_FILE``,
    default ``task_crafter.yaml`` in the working directory).
    """

    model_config = SettingsConfigDict(env_prefix="TASK_CRAFTER_", extra="ignore")

    # Session API
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)
    storage_dir: str = Field(default=".task_crafter")

    # Relay client
    relay_enabled: bool = Field(default=True)
    relay_url: str = Field(default="ws://localhost:3001/ws")
    reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay: float = Field(default=1.0, ge=0)
    sync_policy: SyncPolicy = Field(default="ignore")

    # Relay server
    relay_host: str = Field(default="0.0.0.0")
    relay_port: int = Field(default=3001)
    client_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    relay_queue_size: int = Field(default=100, ge=1)

    reject_dependency_cycles: bool = Field(default=False)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Add the YAML file as the lowest-priority source."""
        yaml_file = os.environ.get("TASK_CRAFTER_CONFIG_FILE", "task_crafter.yaml")
        return (
            init_settings,
            env_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),
        )
