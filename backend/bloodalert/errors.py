"""Domain errors raised by the alert core and rendered by the HTTP layer."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class BloodAlertError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, fields: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.fields = fields or []

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detail": self.message, "error": self.code}
        if self.fields:
            payload["fields"] = self.fields
        return payload


class AlertValidationError(BloodAlertError):
    status_code = 422
    code = "validation_error"

    @classmethod
    def for_field(cls, field: str, message: str) -> "AlertValidationError":
        return cls(message, fields=[{"field": field, "message": message}])


class NotFoundError(BloodAlertError):
    status_code = 404
    code = "not_found"


class ConflictError(BloodAlertError):
    status_code = 409
    code = "conflict"


class StateError(BloodAlertError):
    status_code = 400
    code = "invalid_state"


class StoreUnavailableError(BloodAlertError):
    status_code = 503
    code = "store_unavailable"


class ConcurrentModificationError(ConflictError):
    """The stored document changed between load and save."""

    code = "concurrent_modification"
