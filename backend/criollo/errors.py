"""
Error taxonomy for the floor core.

Business failures derive from FloorError and carry a machine-readable kind,
a human message and structured details. Infrastructure failures are raised as
StorageError, which deliberately sits outside the FloorError hierarchy.
"""

from typing import Any, Dict, List, Optional


class FloorError(Exception):
    """Base class for business-rule failures raised by the core."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"kind": self.kind, "message": self.message}
        payload.update(self.details)
        return payload


class ValidationError(FloorError):
    """Malformed input, rejected before any state change."""

    kind = "validation_error"
    status_code = 422

    def __init__(self, violations: List[str], details: Optional[Dict[str, Any]] = None):
        self.violations = list(violations)
        message = "; ".join(self.violations) or "invalid input"
        super().__init__(message, details)

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["violations"] = self.violations
        return payload


class ConflictError(FloorError):
    """State-machine or business-rule violation."""

    kind = "conflict"
    status_code = 409

    def __init__(
        self,
        message: str,
        current: Optional[str] = None,
        requested: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.current = current
        self.requested = requested

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.current is not None:
            payload["current"] = self.current
        if self.requested is not None:
            payload["requested"] = self.requested
        return payload


class NotFoundError(FloorError):
    """A referenced table, order, invoice, reservation, product or customer is missing."""

    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} '{entity_id}' not found")
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["entity"] = self.entity
        payload["entity_id"] = str(self.entity_id)
        return payload


class StorageError(RuntimeError):
    """Persistence backend unavailable or failing."""
