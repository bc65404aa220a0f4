"""Error taxonomy for the RBAC engine.

Every error carries a small stable ``code`` and a message that is safe to show
past the engine boundary. Store driver text never ends up in ``message``.
"""

from fastapi import HTTPException, status

class RBACError(Exception):
    """Base exception for the RBAC engine."""

    code = "RBAC_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.message}

class AuthenticationError(RBACError):
    """Raised when no principal is present."""
    code = "UNAUTHENTICATED"
    status_code = status.HTTP_401_UNAUTHORIZED

class AuthorizationError(RBACError):
    """Raised when the principal lacks a required permission."""
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN

class ProtectedResourceError(RBACError):
    """Raised on an attempt to mutate or delete a system object."""
    code = "PROTECTED"
    status_code = status.HTTP_403_FORBIDDEN

class ResourceNotFoundError(RBACError):
    """Raised when a referenced row does not exist or is inactive."""
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND

class ResourceConflictError(RBACError):
    """Raised when an active row with the same unique name already exists."""
    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT

class ValidationError(RBACError):
    """Raised when a required field is missing or blank."""
    code = "VALIDATION_ERROR"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

class StoreUnavailableError(RBACError):
    """Raised when the rule store cannot complete a read or write."""
    code = "STORE_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Rule store unavailable"):
        super().__init__(message)

class ResolutionError(RBACError):
    """Raised when a principal's permission set could not be computed."""
    code = "RESOLUTION_FAILED"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "Could not resolve permissions"):
        super().__init__(message)

# HTTP exception shortcuts
def unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )
