"""Domain-specific exceptions for appdoki.

Domain exceptions represent failures in the service layer and are separate
from authentication errors (appdoki.security.auth). The HTTP layer converts
them into generic error responses.
"""


class DomainError(Exception):
    """Base exception for domain layer errors."""

    kind: str = "internal_error"
    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: str, *, context: dict | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message (internal, not returned to clients)
            context: Additional context about the error
        """
        self.message = message
        self.context = context or {}
        super().__init__(message)


class DirectoryError(DomainError):
    """Raised when the user directory cannot read or persist a user record.

    Context should include:
        - operation: The directory operation that failed (e.g. "find_or_create")
        - email: The email being resolved, when known
    """

    kind = "directory_error"
    public_message = "User directory unavailable"
