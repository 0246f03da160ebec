"""Error taxonomy shared by the engine and every transport.

Each exception carries an :class:`~garage_pos.constants.ErrorKind` so the
procedure layer, the HTTP app and the CLI can translate failures without
inspecting messages.
"""

from __future__ import annotations

from typing import Dict

from .constants import ErrorKind


class ServiceError(Exception):
    """Base class for failures reported to callers as ``{kind, message}``."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "message": self.message}


class Unauthenticated(ServiceError):
    """Raised when a procedure is invoked without a caller identity."""

    kind = ErrorKind.UNAUTHENTICATED


class InvalidArgument(ServiceError):
    """Raised when a payload fails the validation layer."""

    kind = ErrorKind.INVALID_ARGUMENT


class NotFound(ServiceError):
    """Raised when a referenced customer, sale or item does not exist."""

    kind = ErrorKind.NOT_FOUND


class FailedPrecondition(ServiceError):
    """Raised when an operation would break a ledger invariant."""

    kind = ErrorKind.FAILED_PRECONDITION


class Internal(ServiceError):
    """Raised for unexpected or store-level failures."""

    kind = ErrorKind.INTERNAL


__all__ = [
    "ServiceError",
    "Unauthenticated",
    "InvalidArgument",
    "NotFound",
    "FailedPrecondition",
    "Internal",
]
