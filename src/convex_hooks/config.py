"""Settings loading for convex-hooks (``.convex-hooks.yml`` plus environment overrides)."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from convex_hooks.errors import ConfigError

CONFIG_FILE_NAME = ".convex-hooks.yml"

DEPLOYMENT_ENV = "CONVEX_DEPLOYMENT"
DEPLOY_KEY_ENV = "CONVEX_DEPLOY_KEY"

_ENV_OVERRIDES = {
    "CONVEX_HOOKS_DEBOUNCE_SECONDS": "debounce_seconds",
    "CONVEX_HOOKS_SNAPSHOT_TTL_SECONDS": "snapshot_ttl_seconds",
    "CONVEX_HOOKS_COMMAND_TIMEOUT_SECONDS": "command_timeout_seconds",
}

SeverityOverride = Literal["error", "warning", "off"]


class HookSettings(BaseModel):
    """Resolved once at startup and passed down; never mutated afterwards."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    functions_dir: str = "convex"
    debounce_seconds: float = Field(default=0.5, ge=0)
    snapshot_ttl_seconds: float = Field(default=300.0, gt=0)
    command_timeout_seconds: float = Field(default=120.0, gt=0)
    fetch_timeout_seconds: float = Field(default=30.0, gt=0)
    codegen_command: tuple[str, ...] = ("npx", "convex", "codegen")
    severity_overrides: dict[str, SeverityOverride] = Field(default_factory=dict)

    @field_validator("severity_overrides", mode="before")
    @classmethod
    def _normalise_overrides(cls, value: Any) -> Any:
        # YAML reads a bare `off` as False
        if not isinstance(value, dict):
            return value
        return {key: "off" if item is False else str(item).strip().lower() for key, item in value.items()}


def load_settings(root: Path) -> HookSettings:
    """Load settings for the project at *root*; a missing file yields defaults."""
    config_file = root / CONFIG_FILE_NAME
    data: dict[str, Any] = {}
    if config_file.exists():
        data = _read_config(config_file)

    for env_name, field_name in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            data[field_name] = value

    try:
        return HookSettings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid {CONFIG_FILE_NAME}: {exc}") from exc


def _read_config(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"{path.name} must contain a mapping at the root")
    return dict(loaded)
