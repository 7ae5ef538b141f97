"""Classified errors and the tagged ``Outcome`` result.

Every boundary that talks to the outside world (archives, adb, host
introspection) reports failure as a classified error rather than a bare
exception string, so callers can turn it into a readable message:

  * ``ParseError``     archive / manifest problems
  * ``BridgeError``    adb could not be run, lost the device, or refused
  * ``ResourceError``  the requested profile does not fit on this host
  * ``ProtocolError``  a guest agent request could not be served

Bridge verbs, the package parser and the resource validator return an
``Outcome`` instead of raising, mirroring ``AdbResult.ok()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ApkSplicerError(RuntimeError):
    """Base class for classified failures."""

    label = "error"

    def __init__(self, kind: Enum, detail: str = "") -> None:
        self.kind = kind
        self.detail = str(detail or "")
        super().__init__(self.describe())

    def describe(self) -> str:
        headline = f"{self.label}: {self.kind.value}"
        if self.detail:
            return f"{headline}: {self.detail}"
        return headline

    def to_dict(self) -> dict[str, str]:
        return {
            "category": self.label,
            "kind": self.kind.value,
            "detail": self.detail,
            "message": self.describe(),
        }


class ParseErrorKind(str, Enum):
    ARCHIVE_CORRUPT = "archive_corrupt"
    MANIFEST_MISSING = "manifest_missing"
    MANIFEST_INVALID = "manifest_invalid"
    NO_INSTALLABLE_UNITS = "no_installable_units"
    NO_BASE_UNIT = "no_base_unit"
    UNSUPPORTED_EXTENSION = "unsupported_extension"


class ParseError(ApkSplicerError):
    label = "package parse failed"

    def __init__(self, kind: ParseErrorKind, detail: str = "") -> None:
        super().__init__(kind, detail)


class BridgeErrorKind(str, Enum):
    BRIDGE_UNAVAILABLE = "bridge_unavailable"
    CONNECTION_LOST = "connection_lost"
    COMMAND_FAILED = "command_failed"


class BridgeError(ApkSplicerError):
    label = "device bridge failed"

    def __init__(self, kind: BridgeErrorKind, detail: str = "") -> None:
        super().__init__(kind, detail)


class ResourceErrorKind(str, Enum):
    INSUFFICIENT_MEMORY = "insufficient_memory"
    INSUFFICIENT_CORES = "insufficient_cores"


class ResourceError(ApkSplicerError):
    label = "insufficient host resources"

    def __init__(self, kind: ResourceErrorKind, *, required: str, available: str) -> None:
        self.required = required
        self.available = available
        super().__init__(kind, f"required {required}, available {available}")


class ProtocolErrorKind(str, Enum):
    MALFORMED = "malformed"
    UNKNOWN_COMMAND_TYPE = "unknown_command_type"


class ProtocolError(ApkSplicerError):
    label = "protocol error"

    def __init__(self, kind: ProtocolErrorKind, detail: str = "") -> None:
        super().__init__(kind, detail)


class JobErrorKind(str, Enum):
    CANCELLED = "cancelled"
    INTERNAL = "internal"


class JobCancelled(ApkSplicerError):
    label = "installation cancelled"

    def __init__(self, detail: str = "cancellation requested") -> None:
        super().__init__(JobErrorKind.CANCELLED, detail)


class JobInternalError(ApkSplicerError):
    """Wraps an unexpected exception so it never reaches callers as a traceback."""

    label = "installation failed unexpectedly"

    def __init__(self, detail: str) -> None:
        super().__init__(JobErrorKind.INTERNAL, detail)


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: Optional[T] = None
    error: Optional[ApkSplicerError] = None

    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ApkSplicerError) -> "Outcome[T]":
        return cls(error=error)
