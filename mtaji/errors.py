"""Exception taxonomy shared by the initiative and intake modules."""
from __future__ import annotations

from typing import Any


class MtajiError(Exception):
    """Base class for all errors raised by this package."""


class ValidationFailed(MtajiError):
    """Input rejected before any store call. ``field`` names the offending input."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class StoreError(MtajiError):
    """The persistent store rejected or failed an operation."""

    def __init__(self, message: str, diagnostics: dict[str, Any] | None = None):
        super().__init__(message)
        self.diagnostics = diagnostics or {}


class NotFound(MtajiError):
    pass


class InvalidTransition(MtajiError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move application from '{current}' to '{target}'")
        self.current = current
        self.target = target


class SubmissionInFlight(MtajiError):
    """A submission for the same caller is already outstanding."""


class PublishTimeout(MtajiError):
    """The publish watchdog expired. The initiative may still have been created."""


class AuthRequired(MtajiError):
    pass


class BlobStoreError(MtajiError):
    pass


def diagnostics(exc: BaseException) -> dict[str, Any]:
    """Pull code/message/details/hint out of a store exception where available."""
    orig = getattr(exc, "orig", None)
    source = orig if orig is not None else exc
    code = (
        getattr(source, "pgcode", None)
        or getattr(source, "sqlstate", None)
        or getattr(exc, "code", None)
    )
    diag = getattr(source, "diag", None)
    message = str(source).strip() or exc.__class__.__name__
    return {
        "code": code,
        "message": message.splitlines()[0],
        "details": getattr(diag, "message_detail", None) if diag else None,
        "hint": getattr(diag, "message_hint", None) if diag else None,
        "statement": getattr(exc, "statement", None),
    }
