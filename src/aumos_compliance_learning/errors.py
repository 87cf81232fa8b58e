"""Typed error taxonomy for the compliance learning service.

Errors:
- ComplianceError          — base class carrying an error code and HTTP status
- NotFoundError            — referenced profile, framework, source, schedule or control is absent
- ValidationError          — malformed input or a control with critical validation issues
- ConflictError            — illegal lifecycle transition or duplicate resource
- ExternalDependencyError  — source fetch or analysis service failure

The API layer maps every ComplianceError subclass to a JSON error response.
"""

from typing import Any


class ComplianceError(Exception):
    """Base error for the compliance learning service.

    Attributes:
        message: Human-readable error description.
        error_code: Stable machine-readable code.
        http_status: HTTP status the API layer responds with.
    """

    error_code: str = "COMPLIANCE_ERROR"
    http_status: int = 500

    def __init__(self, message: str) -> None:
        """Initialize ComplianceError.

        Args:
            message: Error description.
        """
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for an API response body.

        Returns:
            Dict with error_code and message.
        """
        return {"error_code": self.error_code, "message": self.message}


class NotFoundError(ComplianceError):
    """Raised when a referenced resource does not exist."""

    error_code = "NOT_FOUND"
    http_status = 404

    def __init__(self, resource: str, resource_id: str) -> None:
        """Initialize NotFoundError.

        Args:
            resource: Resource type name, e.g. "EntityProfile".
            resource_id: Identifier that was looked up.
        """
        super().__init__(f"{resource} not found: {resource_id}")
        self.resource = resource
        self.resource_id = resource_id

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body.update({"resource": self.resource, "resource_id": self.resource_id})
        return body


class ValidationError(ComplianceError):
    """Raised when input fails validation."""

    error_code = "VALIDATION_ERROR"
    http_status = 422

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize ValidationError.

        Args:
            message: Error description.
            field: Offending field name, if any.
        """
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        if self.field is not None:
            body["field"] = self.field
        return body


class ConflictError(ComplianceError):
    """Raised on an illegal state transition or a duplicate resource."""

    error_code = "CONFLICT"
    http_status = 409


class ExternalDependencyError(ComplianceError):
    """Raised when a source fetch or analysis call fails.

    Attributes:
        dependency: Name of the failing collaborator.
    """

    error_code = "EXTERNAL_DEPENDENCY_FAILED"
    http_status = 502

    def __init__(self, message: str, dependency: str) -> None:
        """Initialize ExternalDependencyError.

        Args:
            message: Error description.
            dependency: Collaborator name, e.g. "source_fetcher".
        """
        super().__init__(message)
        self.dependency = dependency
