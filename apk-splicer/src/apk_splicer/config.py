"""Runtime settings.

Resolution order (later wins): built-in defaults, an optional YAML config file,
``APKSPLICER_*`` environment variables, then explicit overrides (CLI flags).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "APKSPLICER_"
CONFIG_ENV = "APKSPLICER_CONFIG"


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class Settings:
    adb_path: Optional[str] = None
    serial: Optional[str] = None
    guest_host: Optional[str] = None
    guest_port: int = 5555
    boot_timeout_s: float = 30.0
    poll_interval_s: float = 2.0
    command_timeout_s: float = 120.0
    aapt_path: Optional[str] = None
    scratch_root: Optional[str] = None
    profiles_path: Optional[str] = None
    agent_host: str = "0.0.0.0"
    agent_port: int = 8888
    log_level: str = "INFO"

    @property
    def guest_address(self) -> Optional[str]:
        if not self.guest_host:
            return None
        return f"{self.guest_host}:{int(self.guest_port)}"

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Apply non-None overrides (typically parsed CLI flags)."""

        picked = {k: v for k, v in overrides.items() if v is not None}
        if not picked:
            return self
        return _coerce(replace(self, **picked))


_FIELD_TYPES: dict[str, type] = {
    "guest_port": int,
    "agent_port": int,
    "boot_timeout_s": float,
    "poll_interval_s": float,
    "command_timeout_s": float,
}


def _coerce(settings: Settings) -> Settings:
    values: dict[str, Any] = {}
    for f in fields(settings):
        raw = getattr(settings, f.name)
        caster = _FIELD_TYPES.get(f.name)
        if caster is None or raw is None:
            continue
        try:
            values[f.name] = caster(raw)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{f.name} must be {caster.__name__}, got {raw!r}") from e
    if values:
        settings = replace(settings, **values)
    if not str(settings.log_level).strip():
        raise ConfigError("log_level must be a non-empty level name")
    return settings


def load_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file top-level must be a mapping: {path}")

    known = {f.name for f in fields(Settings)}
    unknown = sorted(str(k) for k in data if k not in known)
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {', '.join(unknown)}")
    return dict(data)


def _from_env(environ: Mapping[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for f in fields(Settings):
        raw = environ.get(ENV_PREFIX + f.name.upper())
        if raw is None or not raw.strip():
            continue
        out[f.name] = raw.strip()
    return out


def load_settings(
    *,
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    env = os.environ if environ is None else environ

    if config_path is None and env.get(CONFIG_ENV):
        config_path = Path(env[CONFIG_ENV])

    values: dict[str, Any] = {}
    if config_path is not None:
        values.update(load_config_file(config_path))
        logger.debug("Loaded config file %s", config_path)
    values.update(_from_env(env))

    return _coerce(Settings(**values))
