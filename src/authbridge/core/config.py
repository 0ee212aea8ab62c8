"""AuthBridge configuration: Pydantic model, load, save, and environment overlay."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from authbridge.core.constants import (
    CONFIG_FILENAME,
    DEFAULT_AGENT_OBJECT_PATH,
    DEFAULT_HELPER_PATHS,
    DEFAULT_LOCALE,
    DEFAULT_READ_TIMEOUT_SECONDS,
    DEFAULT_TERMINATE_TIMEOUT_SECONDS,
    _default_config_dir,
)
from authbridge.core.exceptions import ConfigError, ConfigNotFoundError

# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class HelperConfig(BaseModel):
    """How the polkit helper binary is located and driven."""

    path: str = ""  # empty → first existing DEFAULT_HELPER_PATHS entry
    read_timeout_s: float = DEFAULT_READ_TIMEOUT_SECONDS
    terminate_timeout_s: float = DEFAULT_TERMINATE_TIMEOUT_SECONDS

    @field_validator("read_timeout_s")
    @classmethod
    def validate_read_timeout(cls, v: float) -> float:
        if not (1.0 <= v <= 3600.0):
            raise ValueError("read_timeout_s must be between 1 and 3600")
        return v

    @field_validator("terminate_timeout_s")
    @classmethod
    def validate_terminate_timeout(cls, v: float) -> float:
        if not (0.1 <= v <= 60.0):
            raise ValueError("terminate_timeout_s must be between 0.1 and 60")
        return v

    def resolve_path(self) -> str:
        """
        Return the helper binary to execute.

        An explicit ``path`` is returned as-is, even if it does not exist
        (the spawn then fails and is reported as such).  Otherwise the
        distribution defaults are probed in order; if none exists the
        first one is returned.
        """
        if self.path:
            return self.path
        for candidate in DEFAULT_HELPER_PATHS:
            if Path(candidate).exists():
                return candidate
        return DEFAULT_HELPER_PATHS[0]


class AgentConfig(BaseModel):
    """Registration parameters sent to polkitd."""

    object_path: str = DEFAULT_AGENT_OBJECT_PATH
    locale: str = ""  # empty → $LANG
    session_id: str = ""  # empty → $XDG_SESSION_ID

    @field_validator("object_path")
    @classmethod
    def validate_object_path(cls, v: str) -> str:
        if not v.startswith("/") or (len(v) > 1 and v.endswith("/")) or "//" in v:
            raise ValueError(f"Invalid D-Bus object path: {v!r}")
        return v

    def resolve_locale(self) -> str:
        return self.locale or os.environ.get("LANG") or DEFAULT_LOCALE

    def resolve_session_id(self) -> str:
        return self.session_id or os.environ.get("XDG_SESSION_ID", "")


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "text"  # "text" | "json"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("text", "json"):
            raise ValueError("Log format must be 'text' or 'json'")
        return v


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------


class AuthBridgeConfig(BaseModel):
    """Root AuthBridge configuration model."""

    model_config = {"extra": "forbid"}

    config_version: int = 1
    helper: HelperConfig = Field(default_factory=HelperConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def config_file_path() -> Path:
    if env_path := os.environ.get("AUTHBRIDGE_CONFIG"):
        return Path(env_path)
    return _default_config_dir() / CONFIG_FILENAME


def load_config(path: Path | str | None = None) -> AuthBridgeConfig:
    """
    Load AuthBridgeConfig from a TOML file, overlaid with environment variables.

    Priority (highest to lowest):
      1. Environment variables (AUTHBRIDGE_*)
      2. Config file
      3. Built-in defaults

    An agent must start on a machine nobody has configured, so a missing
    file at the default location yields the defaults.  A missing file at
    an explicitly given *path* raises ConfigNotFoundError.
    """
    import tomllib

    explicit = path is not None
    cfg_path = Path(path) if path is not None else config_file_path()

    data: dict[str, Any] = {}
    if cfg_path.exists():
        try:
            with open(cfg_path, "rb") as f:
                data = tomllib.load(f)
        except Exception as exc:
            raise ConfigError(f"Cannot read config file {cfg_path}: {exc}") from exc
    elif explicit:
        raise ConfigNotFoundError(f"Config file not found: {cfg_path}")

    _apply_env_overrides(data)

    try:
        return AuthBridgeConfig.model_validate(data)
    except Exception as exc:
        raise ConfigError(f"Invalid config at {cfg_path}: {exc}") from exc


def _apply_env_overrides(data: dict[str, Any]) -> None:
    """Overlay AUTHBRIDGE_* environment variables onto parsed TOML."""
    env = os.environ.get

    if helper_path := env("AUTHBRIDGE_HELPER_PATH"):
        data.setdefault("helper", {})["path"] = helper_path
    if read_timeout := env("AUTHBRIDGE_READ_TIMEOUT_SECONDS"):
        try:
            data.setdefault("helper", {})["read_timeout_s"] = float(read_timeout)
        except ValueError as exc:
            raise ConfigError(
                f"AUTHBRIDGE_READ_TIMEOUT_SECONDS must be a number, got {read_timeout!r}"
            ) from exc
    if session_id := env("AUTHBRIDGE_SESSION_ID"):
        data.setdefault("agent", {})["session_id"] = session_id
    if level := env("AUTHBRIDGE_LOG_LEVEL"):
        data.setdefault("logging", {})["level"] = level
    if fmt := env("AUTHBRIDGE_LOG_FORMAT"):
        data.setdefault("logging", {})["format"] = fmt


def save_config(config_data: dict[str, Any], path: Path | None = None) -> Path:
    """Write config dict to TOML file with secure permissions (0600)."""
    import tomli_w

    cfg_path = path or config_file_path()
    cfg_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    config_data.setdefault("config_version", 1)

    # Write atomically
    tmp_path = cfg_path.with_suffix(".tmp")
    try:
        with open(tmp_path, "wb") as f:
            tomli_w.dump(config_data, f)
        tmp_path.rename(cfg_path)
    except Exception as exc:
        tmp_path.unlink(missing_ok=True)
        raise ConfigError(f"Cannot write config to {cfg_path}: {exc}") from exc

    cfg_path.chmod(0o600)
    return cfg_path
