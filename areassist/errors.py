"""
Error taxonomy shared by the service layer and the HTTP handlers.

Service functions raise these; `main.py` turns them into JSON responses.
"""

from typing import Dict, List, Optional, Tuple


class AppError(Exception):
    status_code = 500
    public_message: Optional[str] = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict:
        return {"error": self.public_message or self.message}


class ValidationError(AppError):
    """Client input failed one or more preconditions."""

    status_code = 400

    def __init__(self, errors: List[Tuple[str, str]], message: str = "Validation failed"):
        super().__init__(message)
        self.errors = errors

    @property
    def fields(self) -> List[str]:
        return [field for field, _ in self.errors]

    def to_dict(self) -> Dict:
        return {
            "error": self.message,
            "details": [msg for _, msg in self.errors],
            "fields": self.fields,
        }


class AuthError(AppError):
    status_code = 401


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    """Invalid lifecycle transition or a concurrent modification."""

    status_code = 409


class StorageError(AppError):
    status_code = 500
    public_message = "Internal server error"


class UpstreamAuthError(AppError):
    """The identity provider rejected the token (401) or is misconfigured (500)."""

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code

    def to_dict(self) -> Dict:
        if self.status_code >= 500:
            return {"error": "Authentication provider unavailable"}
        return {"error": self.message}
