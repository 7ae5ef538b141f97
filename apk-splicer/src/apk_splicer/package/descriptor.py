from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

OBB_REMOTE_ROOT = "/sdcard/Android/obb"


@dataclass(frozen=True)
class AuxiliaryDataFile:
    """Expansion data (``.obb``) shipped next to the installable units."""

    package_id: str
    source_path: Path
    file_name: str

    @property
    def remote_dir(self) -> str:
        return f"{OBB_REMOTE_ROOT}/{self.package_id}"

    @property
    def remote_path(self) -> str:
        return f"{self.remote_dir}/{self.file_name}"


@dataclass(frozen=True)
class PackageDescriptor:
    package_id: str
    units: Tuple[Path, ...]
    source_kind: str
    display_name: Optional[str] = None
    version_name: Optional[str] = None
    version_code: Optional[int] = None
    aux_files: Tuple[AuxiliaryDataFile, ...] = ()
    icon: Optional[bytes] = field(default=None, repr=False)
    scratch_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        if not self.units:
            raise ValueError("PackageDescriptor requires at least one installable unit")

    @property
    def unit_names(self) -> list[str]:
        return [p.name for p in self.units]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package_id": self.package_id,
            "display_name": self.display_name,
            "version_name": self.version_name,
            "version_code": self.version_code,
            "source_kind": self.source_kind,
            "units": [str(p) for p in self.units],
            "aux_files": [
                {"file_name": a.file_name, "remote_path": a.remote_path} for a in self.aux_files
            ],
            "has_icon": self.icon is not None,
        }


@dataclass(frozen=True)
class ArchiveInfo:
    """Result of the cheap first look at an archive (before extraction)."""

    path: Path
    source_kind: str
    member_names: Tuple[str, ...]
    manifest: Optional[Dict[str, Any]] = None
