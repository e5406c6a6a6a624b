"""
Domain errors raised by the settlement services.

Each error maps to one HTTP status and a stable ``error`` code; the API layer
renders them as ``{"error": ..., "message": ...}``.
"""
from typing import Any, Dict, List, Optional


class SettlementError(Exception):
    status_code = 500
    code = "settlement_error"

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(SettlementError):
    status_code = 400
    code = "validation_error"

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, details=[{"field": field, "message": message}])


class DiscrepancyConfirmationRequired(ValidationError):
    code = "discrepancy_confirmation_required"

    def __init__(self, discrepancy):
        super().__init__(
            "discrepancy requires explanation",
            details=[{
                "field": "discrepancy_notes",
                "message": f"Collected cash differs from expected by {discrepancy}; "
                           "add discrepancy_notes or set confirm_discrepancy",
            }],
        )
        self.discrepancy = discrepancy


class NotFoundError(SettlementError):
    status_code = 404
    code = "not_found"


class ConflictError(SettlementError):
    status_code = 409
    code = "conflict"


class PermissionDeniedError(SettlementError):
    status_code = 403
    code = "forbidden"
