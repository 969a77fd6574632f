from __future__ import annotations

from typing import Any


class BookingError(Exception):
    """Base class for every error the booking engine reports to callers."""

    code = "booking_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"ok": False, "error": self.code, "message": self.message}


class ValidationError(BookingError, ValueError):
    code = "validation_error"
    status_code = 400


class PermissionDenied(BookingError):
    code = "forbidden"
    status_code = 403


class NotFoundError(BookingError):
    """Raised for absent records and for records owned by another organization.

    Both cases produce the same message so callers cannot discover other tenants' resources.
    """

    code = "not_found"
    status_code = 404


class ConflictError(BookingError):
    code = "conflict"
    status_code = 409

    def __init__(self, message: str, conflicts: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.conflicts = conflicts or []

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["conflicts"] = self.conflicts
        return payload


class StateTransitionError(BookingError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, action: str) -> None:
        super().__init__(f"Cannot {action} a booking that is {current}.")
        self.current = current
        self.action = action

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["current_status"] = self.current
        payload["action"] = self.action
        return payload


class StorageError(BookingError, RuntimeError):
    code = "storage_error"
    status_code = 500


class AuthenticationError(BookingError):
    code = "unauthenticated"
    status_code = 401
