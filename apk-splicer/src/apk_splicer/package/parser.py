"""APK / XAPK archive parsing.

Parsing is split in two so the installer can report progress between them:

  * ``inspect``  opens the archive, rejects unsafe members and reads the
                 bundle manifest without extracting anything;
  * ``extract``  expands a bundle into a scratch directory and builds the
                 immutable ``PackageDescriptor``.

``parse`` runs both and returns an ``Outcome`` instead of raising.
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Optional

from apk_splicer.errors import Outcome, ParseError, ParseErrorKind
from apk_splicer.package.badging import BadgingReader
from apk_splicer.package.descriptor import ArchiveInfo, AuxiliaryDataFile, PackageDescriptor
from apk_splicer.schema_io import (
    SchemaValidationError,
    load_bundled_schema,
    validate_against_schema,
)

logger = logging.getLogger(__name__)

APK_EXT = ".apk"
XAPK_EXT = ".xapk"
OBB_EXT = ".obb"
SUPPORTED_EXTENSIONS = (APK_EXT, XAPK_EXT)

MANIFEST_NAME = "manifest.json"
ANDROID_MANIFEST = "AndroidManifest.xml"
ICON_NAMES = ("icon.png", "app_icon.png", "launcher_icon.png")
MANIFEST_SCHEMA = "xapk_manifest.schema.json"


def source_kind_for(path: Path) -> str:
    ext = path.suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise ParseError(
            ParseErrorKind.UNSUPPORTED_EXTENSION,
            f"unsupported file type {ext or '(none)'!r}; expected .apk or .xapk",
        )
    return ext.lstrip(".")


def is_base_unit_name(file_name: str) -> bool:
    name = file_name.lower()
    return "base" in name or "split" not in name


def placeholder_package_id(path: Path) -> str:
    return f"com.unknown.{path.stem.lower()}"


def _is_unsafe_member(name: str) -> bool:
    p = PurePosixPath(name.replace("\\", "/"))
    if p.is_absolute() or (p.parts and p.parts[0].endswith(":")):
        return True
    return ".." in p.parts


def _decode_manifest(raw: bytes) -> Dict[str, Any]:
    try:
        data = json.loads(raw.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ParseError(ParseErrorKind.MANIFEST_INVALID, f"{MANIFEST_NAME}: {e}") from e
    if not isinstance(data, dict):
        raise ParseError(
            ParseErrorKind.MANIFEST_INVALID, f"{MANIFEST_NAME}: top-level must be an object"
        )
    try:
        validate_against_schema(data, load_bundled_schema(MANIFEST_SCHEMA), where=MANIFEST_NAME)
    except SchemaValidationError as e:
        raise ParseError(ParseErrorKind.MANIFEST_INVALID, str(e)) from e
    return data


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def cleanup_scratch(scratch_dir: Optional[Path]) -> None:
    if scratch_dir is None:
        return
    shutil.rmtree(scratch_dir, ignore_errors=True)


class PackageParser:
    def __init__(
        self,
        *,
        badging: Optional[BadgingReader] = None,
        scratch_root: Optional[Path] = None,
    ) -> None:
        self._badging = badging if badging is not None else BadgingReader()
        self._scratch_root = Path(scratch_root) if scratch_root is not None else None

    def make_scratch_dir(self) -> Path:
        if self._scratch_root is not None:
            self._scratch_root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix="apksplicer_", dir=self._scratch_root))

    # ----------------------------------------------------------------- inspect

    def inspect(self, path: Path) -> ArchiveInfo:
        path = Path(path)
        kind = source_kind_for(path)
        if not path.is_file():
            raise ParseError(ParseErrorKind.ARCHIVE_CORRUPT, f"not a readable file: {path}")

        try:
            with zipfile.ZipFile(path) as zf:
                names = tuple(zf.namelist())
                unsafe = [n for n in names if _is_unsafe_member(n)]
                if unsafe:
                    raise ParseError(
                        ParseErrorKind.ARCHIVE_CORRUPT,
                        f"archive member escapes the extraction root: {unsafe[0]}",
                    )

                manifest: Optional[Dict[str, Any]] = None
                if kind == "apk":
                    if ANDROID_MANIFEST not in names:
                        raise ParseError(
                            ParseErrorKind.ARCHIVE_CORRUPT,
                            f"{path.name} has no {ANDROID_MANIFEST}",
                        )
                else:
                    if MANIFEST_NAME not in names:
                        raise ParseError(
                            ParseErrorKind.MANIFEST_MISSING,
                            f"{MANIFEST_NAME} not found in {path.name}",
                        )
                    manifest = _decode_manifest(zf.read(MANIFEST_NAME))
        except ParseError:
            raise
        except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, EOFError) as e:
            raise ParseError(ParseErrorKind.ARCHIVE_CORRUPT, f"{path.name}: {e}") from e

        logger.info("Inspected %s archive %s (%d members)", kind, path.name, len(names))
        return ArchiveInfo(path=path, source_kind=kind, member_names=names, manifest=manifest)

    # ----------------------------------------------------------------- extract

    def extract(self, info: ArchiveInfo, scratch_dir: Optional[Path]) -> PackageDescriptor:
        if info.source_kind == "apk":
            return self._describe_apk(info)
        if scratch_dir is None:
            raise ValueError("extracting a bundle requires a scratch directory")
        return self._extract_bundle(info, Path(scratch_dir))

    def _describe_apk(self, info: ArchiveInfo) -> PackageDescriptor:
        badging = self._badging.read(info.path)
        if badging is not None:
            return PackageDescriptor(
                package_id=badging.package_id,
                units=(info.path,),
                source_kind="apk",
                display_name=badging.label or info.path.stem,
                version_name=badging.version_name,
                version_code=badging.version_code,
            )

        package_id = placeholder_package_id(info.path)
        logger.warning(
            "No embedded metadata readable for %s (aapt unavailable or failed); "
            "using placeholder id %s",
            info.path.name,
            package_id,
        )
        return PackageDescriptor(
            package_id=package_id,
            units=(info.path,),
            source_kind="apk",
            display_name=info.path.stem,
        )

    def _extract_bundle(self, info: ArchiveInfo, scratch_dir: Path) -> PackageDescriptor:
        manifest = info.manifest or {}
        package_id = str(manifest["package_name"])

        scratch_dir.mkdir(parents=True, exist_ok=True)
        try:
            with zipfile.ZipFile(info.path) as zf:
                zf.extractall(scratch_dir)
        except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError) as e:
            raise ParseError(ParseErrorKind.ARCHIVE_CORRUPT, f"{info.path.name}: {e}") from e
        except OSError as e:
            raise ParseError(
                ParseErrorKind.ARCHIVE_CORRUPT, f"extracting {info.path.name} failed: {e}"
            ) from e

        units = sorted(
            (p for p in scratch_dir.rglob("*") if p.is_file() and p.suffix.lower() == APK_EXT),
            key=lambda p: (p.name, str(p)),
        )
        if not units:
            raise ParseError(
                ParseErrorKind.NO_INSTALLABLE_UNITS, f"no {APK_EXT} files found in {info.path.name}"
            )
        if not any(is_base_unit_name(p.name) for p in units):
            raise ParseError(
                ParseErrorKind.NO_BASE_UNIT,
                f"no base unit among {', '.join(p.name for p in units)}",
            )

        obb_dir = scratch_dir / "Android" / "obb" / package_id
        aux_files: list[AuxiliaryDataFile] = []
        if obb_dir.is_dir():
            for p in sorted(obb_dir.iterdir(), key=lambda q: q.name):
                if p.is_file() and p.suffix.lower() == OBB_EXT:
                    aux_files.append(
                        AuxiliaryDataFile(package_id=package_id, source_path=p, file_name=p.name)
                    )

        icon: Optional[bytes] = None
        for name in ICON_NAMES:
            candidate = scratch_dir / name
            if candidate.is_file():
                try:
                    icon = candidate.read_bytes()
                except OSError:
                    icon = None
                break

        name = manifest.get("name")
        version_name = manifest.get("version_name")
        descriptor = PackageDescriptor(
            package_id=package_id,
            units=tuple(units),
            source_kind="xapk",
            display_name=str(name) if name else None,
            version_name=str(version_name) if version_name else None,
            version_code=_optional_int(manifest.get("version_code")),
            aux_files=tuple(aux_files),
            icon=icon,
            scratch_dir=scratch_dir,
        )
        logger.info(
            "Extracted %s: %d unit(s), %d auxiliary file(s)",
            package_id,
            len(descriptor.units),
            len(descriptor.aux_files),
        )
        return descriptor

    # ------------------------------------------------------------------- parse

    def parse(self, path: Path) -> Outcome[PackageDescriptor]:
        """Inspect and extract in one go.

        On success a bundle's descriptor owns ``scratch_dir``; release it with
        ``cleanup_scratch(descriptor.scratch_dir)`` once the install is done.
        """

        scratch: Optional[Path] = None
        try:
            info = self.inspect(Path(path))
            if info.source_kind == "xapk":
                scratch = self.make_scratch_dir()
            return Outcome.success(self.extract(info, scratch))
        except ParseError as e:
            cleanup_scratch(scratch)
            return Outcome.failure(e)
