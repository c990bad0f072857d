"""
Client configuration using Pydantic BaseSettings.

Settings normally come from the CPI options mapping (or a YAML file holding
it); values missing there fall back to environment variables (VCD_* for the
connection and entities, VCD_CONTROL_* for control, LOG_* for logging) and
then to the documented defaults below.

Usage:
    from vcloud_cpi.settings import load_settings

    settings = load_settings("/var/vcap/jobs/cpi/config/cpi.yml")
    print(settings.entities.control.wait_max)

The fallback applies field by field in every section, so a partial `control`
section still picks up VCD_CONTROL_* for the fields it leaves out. Null
counts as missing. Negative values are rejected, never clamped.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings

# Control defaults
WAIT_MAX = 300  # seconds to wait for a task
WAIT_DELAY = 5  # seconds between task polls
RETRY_MAX = 3  # retries after the first attempt
RETRY_DELAY = 100  # milliseconds between attempts
COOKIE_TIMEOUT = 600  # seconds before the session cookie is considered stale

VCLOUD_VERSION_NUMBER = "5.1"


# =============================================================================
# Nested Settings Groups
# =============================================================================


def _settings_group(group_class, value):
    """
    Build a nested settings group from an options section.

    Groups are constructed rather than validated as plain models so that
    every field missing from the section (or null in it) still falls back
    to its environment variable, then to its default.
    """
    if value is None:
        return group_class()
    if isinstance(value, dict):
        return group_class(**{k: v for k, v in value.items() if v is not None})
    return value


class ControlSettings(BaseSettings):
    """Timing and retry knobs for the API client."""

    model_config = {"env_prefix": "VCD_CONTROL_", "extra": "ignore"}

    wait_max: float = Field(WAIT_MAX, ge=0)
    wait_delay: float = Field(WAIT_DELAY, ge=0)
    retry_max: int = Field(RETRY_MAX, ge=0)
    retry_delay: float = Field(RETRY_DELAY, ge=0)
    cookie_timeout: float = Field(COOKIE_TIMEOUT, ge=0)

    @field_validator("*", mode="before")
    @classmethod
    def _none_means_default(cls, value, info):
        """A null field passed directly behaves like a missing one."""
        if value is None:
            return cls.model_fields[info.field_name].default
        return value


class LoggingSettings(BaseSettings):
    """Handlers installed on the `vcloud_cpi` logger."""

    model_config = {"env_prefix": "LOG_", "extra": "ignore"}

    level: str = "INFO"
    format: str = "json"  # json | text
    file: str = ""
    max_bytes: int = Field(10 * 1024 * 1024, ge=0)
    backup_count: int = Field(5, ge=0)


class EntitySettings(BaseSettings):
    """Names of the vCloud entities the CPI works in."""

    model_config = {"env_prefix": "VCD_", "extra": "ignore"}

    organization: Optional[str] = None
    virtual_datacenter: Optional[str] = None
    vapp_catalog: Optional[str] = None
    media_catalog: Optional[str] = None
    vm_metadata_key: str = "vcloud-cpi-vm"
    description: str = ""
    control: ControlSettings = Field(default_factory=ControlSettings)

    @field_validator("control", mode="before")
    @classmethod
    def _build_control(cls, value):
        return _settings_group(ControlSettings, value)


# =============================================================================
# Root Settings
# =============================================================================


class VCloudSettings(BaseSettings):
    """Connection settings for one vCloud Director endpoint."""

    model_config = {"env_prefix": "VCD_", "extra": "ignore"}

    url: str
    user: str
    password: SecretStr = SecretStr("")
    api_version: str = VCLOUD_VERSION_NUMBER
    verify_ssl: bool = False
    request_timeout: int = 60
    entities: EntitySettings = Field(default_factory=EntitySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("entities", mode="before")
    @classmethod
    def _build_entities(cls, value):
        return _settings_group(EntitySettings, value)

    @field_validator("logging", mode="before")
    @classmethod
    def _build_logging(cls, value):
        return _settings_group(LoggingSettings, value)

    @property
    def control(self) -> ControlSettings:
        return self.entities.control

    @property
    def login_user(self) -> str:
        """User name in the `user@organization` form vCloud expects."""
        if "@" in self.user or not self.entities.organization:
            return self.user
        return f"{self.user}@{self.entities.organization}"

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "VCloudSettings":
        """
        Build settings from a CPI options mapping.

        Accepts either a single vCD entry or the full CPI options with a
        `vcds` list, in which case the first entry is used.
        """
        if "vcds" in data:
            vcds = data["vcds"] or []
            if not vcds:
                raise ValueError("CPI options contain an empty 'vcds' list")
            data = vcds[0]
        return cls(**data)


def load_settings(path: Union[str, Path]) -> VCloudSettings:
    """
    Load settings from a YAML options file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated VCloudSettings

    Raises:
        FileNotFoundError: File does not exist
        ValueError: File is empty or fails validation
    """
    with open(path) as f:
        data = yaml.safe_load(f)

    if not data:
        raise ValueError(f"Options file {path} is empty")

    return VCloudSettings.from_mapping(data)
