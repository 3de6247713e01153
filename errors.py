"""
Exceptions raised by the certificate services.

Each carries the HTTP status the API layer answers with, so routes can let
them propagate and a single exception handler turns them into
``{"error": message}`` responses. Inside a bulk stream they become the
terminal ``error`` event instead.
"""

from typing import Any


class CertificateAppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message}


class PermissionDeniedError(CertificateAppError):
    """Caller's role may not perform the operation."""

    status_code = 403


class NotFoundError(CertificateAppError):
    """Template or certificate missing (or not visible to the caller)."""

    status_code = 404


class ValidationError(CertificateAppError):
    """Bad input: missing template id, missing file, empty or invalid CSV."""

    status_code = 400


class RenderError(CertificateAppError):
    status_code = 500
