"""
Typed error taxonomy for the procurement lifecycle.

Services raise these; the HTTP layer maps each category to a status code.
"""
from typing import Any, Dict, Optional


class ProcurementError(Exception):
    """Base class for all business errors."""

    category = "procurement_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.category, "detail": self.message}
        if self.details:
            payload["context"] = self.details
        return payload


class AuthenticationError(ProcurementError):
    """Credentials rejected, account locked or inactive."""

    category = "authentication_error"
    status_code = 401


class AuthorizationError(ProcurementError):
    """Caller lacks the role or ownership required for the action."""

    category = "authorization_error"
    status_code = 403


class StateError(ProcurementError):
    """Entity status does not permit the requested transition."""

    category = "state_error"
    status_code = 409


class ConflictError(ProcurementError):
    """Uniqueness or cross-organization consistency violation."""

    category = "conflict_error"
    status_code = 409


class ValidationError(ProcurementError):
    """Business-rule violation not caught by payload shape validation."""

    category = "validation_error"
    status_code = 422


class NotFoundError(ProcurementError):
    category = "not_found"
    status_code = 404

    def __init__(self, entity_type: str, entity_id: Any = None):
        message = f"{entity_type} not found"
        super().__init__(message, {"entity_type": entity_type, "entity_id": entity_id})
        self.entity_type = entity_type
        self.entity_id = entity_id


class EvaluationFailure(ProcurementError):
    """The evaluation oracle failed or returned unusable data."""

    category = "evaluation_failure"
    status_code = 502
