"""Archive parsing for single APKs and XAPK bundles."""

from apk_splicer.package.descriptor import ArchiveInfo, AuxiliaryDataFile, PackageDescriptor
from apk_splicer.package.parser import PackageParser, cleanup_scratch

__all__ = [
    "ArchiveInfo",
    "AuxiliaryDataFile",
    "PackageDescriptor",
    "PackageParser",
    "cleanup_scratch",
]
