"""Process configuration loading helpers."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping

import tomllib

from pydantic import BaseModel, Field, ValidationError

LOG = logging.getLogger(__name__)

CONFIG_DIR_ENV = "MONGOQUICK_CONFIG_DIR"
SECRET_ENV = "MONGOQUICK_KEY"

DEFAULT_CONFIG_DIR = Path.home() / ".mongoquick"
# Insecure fallback; set MONGOQUICK_KEY to protect stored URIs.
DEFAULT_ENCRYPTION_SECRET = "default-key-change-in-production"

DEFAULT_CLIENT_OPTIONS: Mapping[str, object] = {
    "maxPoolSize": 10,
    "minPoolSize": 1,
    "maxIdleTimeMS": 30_000,
    "serverSelectionTimeoutMS": 5_000,
    "connectTimeoutMS": 10_000,
    "socketTimeoutMS": 45_000,
    "heartbeatFrequencyMS": 10_000,
    "retryWrites": True,
    "retryReads": True,
    "readPreference": "primary",
    "compressors": "zlib",
}


class ManagerSettings(BaseModel):
    """Tuning knobs for the connection manager."""

    health_cache_ttl: float = 30.0
    max_failures: int = 3
    breaker_cooldown: float = 60.0
    idle_timeout: float = 300.0
    sweep_interval: float = 60.0
    client_options: dict[str, Any] = Field(default_factory=lambda: dict(DEFAULT_CLIENT_OPTIONS))

    def with_client_options(self, **updates: object) -> ManagerSettings:
        """Return a copy with driver defaults overridden field-wise."""

        options = {**self.client_options, **updates}
        return self.model_copy(update={"client_options": options})


class Settings(BaseModel):
    """Shape of the process-wide configuration."""

    config_dir: Path = DEFAULT_CONFIG_DIR
    encryption_secret: str = DEFAULT_ENCRYPTION_SECRET
    manager: ManagerSettings = Field(default_factory=ManagerSettings)

    @property
    def profiles_file(self) -> Path:
        return self.config_dir / "profiles.json"

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.toml"

    @property
    def uses_default_secret(self) -> bool:
        return self.encryption_secret == DEFAULT_ENCRYPTION_SECRET


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build settings from the environment plus an optional config.toml."""

    env = os.environ if environ is None else environ
    config_dir = Path(env[CONFIG_DIR_ENV]).expanduser() if env.get(CONFIG_DIR_ENV) else DEFAULT_CONFIG_DIR
    secret = env.get(SECRET_ENV) or DEFAULT_ENCRYPTION_SECRET
    settings = Settings(config_dir=config_dir, encryption_secret=secret)

    try:
        data = _read_config_file(settings.config_file)
    except FileNotFoundError:
        data = {}
    except (tomllib.TOMLDecodeError, OSError):
        LOG.warning("Ignoring unreadable config file", extra={"path": str(settings.config_file)})
        data = {}

    manager_data = data.get("manager")
    if isinstance(manager_data, dict):
        try:
            settings = settings.model_copy(update={"manager": _merge_manager(manager_data)})
        except ValidationError:
            LOG.warning("Ignoring invalid [manager] table", extra={"path": str(settings.config_file)})

    if settings.uses_default_secret:
        LOG.warning("Using the default encryption secret; set %s to protect stored URIs", SECRET_ENV)
    return settings


def _merge_manager(raw: dict[str, object]) -> ManagerSettings:
    fields: dict[str, object] = {}
    for key in ("health_cache_ttl", "max_failures", "breaker_cooldown", "idle_timeout", "sweep_interval"):
        if key in raw:
            fields[key] = raw[key]
    manager = ManagerSettings(**fields)
    options = raw.get("client_options")
    if isinstance(options, dict):
        manager = manager.with_client_options(**{str(name): value for name, value in options.items()})
    return manager


def _read_config_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    return raw if isinstance(raw, dict) else {}


__all__ = [
    "CONFIG_DIR_ENV",
    "DEFAULT_CLIENT_OPTIONS",
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_ENCRYPTION_SECRET",
    "ManagerSettings",
    "SECRET_ENV",
    "Settings",
    "load_settings",
]
