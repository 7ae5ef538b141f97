"""Guest resource profiles and the preset catalogue."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from apk_splicer.schema_io import (
    SchemaValidationError,
    load_bundled_schema,
    load_yaml_or_json,
    validate_against_schema,
)

logger = logging.getLogger(__name__)

PRESETS_PATH = Path(__file__).resolve().parent / "presets.yaml"
PROFILES_SCHEMA = "profiles.schema.json"
DEFAULT_PROFILE = "medium"


class ProfileError(RuntimeError):
    pass


@dataclass(frozen=True)
class DisplayConfiguration:
    width: int
    height: int
    refresh_rate: int = 60
    dpi: int = 320

    def __str__(self) -> str:
        return f"{self.width}x{self.height}@{self.refresh_rate}Hz {self.dpi}dpi"


@dataclass(frozen=True)
class ResourceProfile:
    name: str
    cpu_count: int
    memory_mb: int
    disk_gb: int
    display: DisplayConfiguration = field(default_factory=lambda: DisplayConfiguration(1920, 1080))
    thermal_stepdown: bool = True
    abi_preference: str = "arm64-v8a"

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> "ResourceProfile":
        display = dict(data.get("display") or {})
        return cls(
            name=name,
            cpu_count=int(data["cpu_count"]),
            memory_mb=int(data["memory_mb"]),
            disk_gb=int(data["disk_gb"]),
            display=DisplayConfiguration(
                width=int(display["width"]),
                height=int(display["height"]),
                refresh_rate=int(display.get("refresh_rate", 60)),
                dpi=int(display.get("dpi", 320)),
            ),
            thermal_stepdown=bool(data.get("thermal_stepdown", True)),
            abi_preference=str(data.get("abi_preference", "arm64-v8a")),
        )

    def summary(self) -> str:
        return (
            f"{self.name}: {self.cpu_count} cores, {self.memory_mb} MB RAM, "
            f"{self.disk_gb} GB disk, {self.display}"
        )


def load_profiles(path: Path) -> Dict[str, ResourceProfile]:
    """Load and schema-check a profiles file (YAML or JSON)."""

    try:
        data = load_yaml_or_json(Path(path))
    except (OSError, ValueError) as e:
        raise ProfileError(f"Cannot read profiles file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ProfileError(f"Cannot parse profiles file {path}: {e}") from e

    try:
        validate_against_schema(data, load_bundled_schema(PROFILES_SCHEMA), where=str(path))
    except SchemaValidationError as e:
        raise ProfileError(str(e)) from e

    return {
        name: ResourceProfile.from_mapping(name, body)
        for name, body in sorted(data["profiles"].items())
    }


def builtin_profiles() -> Dict[str, ResourceProfile]:
    return load_profiles(PRESETS_PATH)


def available_profiles(extra_path: Optional[Path] = None) -> Dict[str, ResourceProfile]:
    """Bundled presets, overlaid with a user file when one is given."""

    profiles = builtin_profiles()
    if extra_path is not None:
        extra = load_profiles(Path(extra_path))
        logger.info("Loaded %d profile(s) from %s", len(extra), extra_path)
        profiles.update(extra)
    return profiles


def get_profile(name: str, *, extra_path: Optional[Path] = None) -> ResourceProfile:
    profiles = available_profiles(extra_path)
    try:
        return profiles[name]
    except KeyError:
        known = ", ".join(sorted(profiles))
        raise ProfileError(f"Unknown profile {name!r} (known: {known})") from None
