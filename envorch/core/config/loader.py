"""
Settings loader — reads envorch.yml into a validated Settings model.

The settings file is optional: without one, defaults apply and the
working directory is the root. Identity and credentials come from the
environment and always win over the file:

    ENVORCH_ACCOUNT     account identity
    ENVORCH_CLUSTER     default cluster for environment:create
    ENVORCH_TOKEN       credential handed to provisioner commands
    ENVORCH_STATE_DIR   where environment records live
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from envorch.core.services.durations import parse_duration

logger = logging.getLogger(__name__)

# Default config filename
SETTINGS_FILE = "envorch.yml"
DEFAULT_STATE_DIR = ".envorch"


class ConfigError(Exception):
    """Raised when the settings file is invalid or unreadable."""


class ProvisionerSettings(BaseModel):
    """Which provisioner carries out plan actions, and how."""

    type: Literal["shell", "mock"] = "shell"
    commands: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None
    timeout: int = Field(default=600, gt=0)


class Settings(BaseModel):
    """Orchestrator settings."""

    version: int = 1

    account: str = ""
    cluster: str = ""
    token: str = Field(default="", repr=False, exclude=True)

    state_dir: str = DEFAULT_STATE_DIR
    catalog: list[str] = Field(default_factory=list)

    reaper_interval: int = 60
    lease_ttl: int = 900
    lock_poll_interval: float = Field(default=0.2, gt=0)
    deploy_timeout: int | None = None
    destroy_missing_ok: bool = False

    circuit_breaker_threshold: int = Field(default=5, ge=1)
    circuit_breaker_timeout: int = 30

    provisioner: ProvisionerSettings = Field(default_factory=ProvisionerSettings)

    root: Path = Field(default_factory=Path.cwd, exclude=True)

    @field_validator(
        "reaper_interval", "lease_ttl", "deploy_timeout", "circuit_breaker_timeout",
        mode="before",
    )
    @classmethod
    def _duration(cls, value: object) -> object:
        if value is None:
            return None
        return parse_duration(value)  # type: ignore[arg-type]

    @property
    def state_path(self) -> Path:
        path = Path(self.state_dir).expanduser()
        return path if path.is_absolute() else self.root / path

    @property
    def catalog_paths(self) -> list[Path]:
        paths = []
        for entry in self.catalog:
            path = Path(entry).expanduser()
            paths.append(path if path.is_absolute() else self.root / path)
        return paths

    def credentials(self) -> dict[str, str]:
        """Variables handed to provisioner subprocesses."""
        return {"ENVORCH_TOKEN": self.token} if self.token else {}


def find_settings_file(start_dir: Path | None = None) -> Path | None:
    """Search for envorch.yml starting from the given directory, walking up."""
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        for name in (SETTINGS_FILE, "envorch.yaml"):
            candidate = current / name
            if candidate.is_file():
                return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_settings(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Load settings from a file (explicit or discovered) plus the environment.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    environ = os.environ if environ is None else environ
    data: dict = {}
    root = Path.cwd()

    if path is not None and not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    if path is None:
        path = find_settings_file()

    if path is not None:
        logger.debug("Loading settings from %s", path)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e
        try:
            loaded = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Expected a YAML mapping in {path}, got {type(loaded).__name__}")
        data = loaded
        root = path.parent.resolve()

    overrides = {
        "account": environ.get("ENVORCH_ACCOUNT"),
        "cluster": environ.get("ENVORCH_CLUSTER"),
        "token": environ.get("ENVORCH_TOKEN"),
        "state_dir": environ.get("ENVORCH_STATE_DIR"),
    }
    for key, value in overrides.items():
        if value:
            data[key] = value
    data["root"] = root

    try:
        settings = Settings.model_validate(data)
    except (ValidationError, ValueError) as e:
        raise ConfigError(f"Invalid settings{f' in {path}' if path else ''}: {e}") from e

    logger.info("Settings loaded (root=%s, state=%s)", settings.root, settings.state_path)
    return settings
