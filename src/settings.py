from pathlib import Path
from typing import Annotated, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    PositiveInt,
    field_validator,
)

from src import constants

LogLevel = Literal["OFF", "ERROR", "WARN", "INFO", "DEBUG", "TRACE"]


class HostName(BaseModel):
    """Target releases by this machine's hostname."""

    model_config = ConfigDict(frozen=True)

    type: Literal["HostName"]


class HostCidr(BaseModel):
    """Target releases by a local address inside the given block."""

    model_config = ConfigDict(frozen=True)

    type: Literal["HostCidr"]
    cidr: str


class Custom(BaseModel):
    """Target releases by an opaque label."""

    model_config = ConfigDict(frozen=True)

    type: Literal["Custom"]
    custom: str


HostIdentity = Annotated[HostName | HostCidr | Custom, Field(discriminator="type")]


class AppSettings(BaseModel):
    """One Apollo app and the namespaces to keep in sync."""

    model_config = ConfigDict(frozen=True)

    app_id: str
    namespaces: list[str] = Field(min_length=1)


class SyncDaemonSettings(BaseModel):
    """Config sync daemon settings loaded from a YAML configuration file.

    Settings are immutable per runtime and loaded from explicit configuration.
    """

    model_config = ConfigDict(frozen=True)

    # Required settings
    dir: Path
    config_service_url: HttpUrl
    apps: list[AppSettings]

    # Optional settings with defaults
    log_level: LogLevel = "INFO"
    worker_threads: PositiveInt | None = None
    host: HostIdentity | None = None
    cluster: str = constants.DEFAULT_CLUSTER
    connection_timeout: PositiveInt = constants.APOLLO_CONNECTION_TIMEOUT
    retry_interval: PositiveInt = constants.APOLLO_RETRY_INTERVAL

    @field_validator("log_level", mode="before")
    @classmethod
    def bare_off_log_level(cls, value):
        # YAML 1.1 reads an unquoted OFF as false
        return "OFF" if value is False else value


def load_settings(config_path: Path) -> SyncDaemonSettings:
    """Load and validate daemon settings from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated settings.

    Raises:
        OSError: If the file cannot be read.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If the content does not match the schema.
    """
    with open(config_path, "r", encoding="utf-8") as f:
        config_dict = yaml.safe_load(f) or {}
    return SyncDaemonSettings.model_validate(config_dict)
