"""Guest resource profiles and host-capacity validation."""

from apk_splicer.profiles.profile import (
    DEFAULT_PROFILE,
    DisplayConfiguration,
    ProfileError,
    ResourceProfile,
    available_profiles,
    get_profile,
    load_profiles,
)
from apk_splicer.profiles.validator import HostCapacity, ResourceValidator

__all__ = [
    "DEFAULT_PROFILE",
    "DisplayConfiguration",
    "HostCapacity",
    "ProfileError",
    "ResourceProfile",
    "ResourceValidator",
    "available_profiles",
    "get_profile",
    "load_profiles",
]
