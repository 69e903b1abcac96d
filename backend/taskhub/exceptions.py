"""Domain exceptions.

Every failure a service can raise maps to one of these classes. The API
layer renders them with a single exception handler (see ``taskhub.main``),
so services never build HTTP responses themselves.
"""

from typing import Optional


class TaskhubError(Exception):
    """Base exception for all domain errors."""

    status_code: int = 500

    def __init__(self, message: str, code: str = "TASKHUB_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(TaskhubError):
    """Referenced tenant, project, task or user does not exist in scope."""

    status_code = 404

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message=message, code="NOT_FOUND")


class AuthenticationError(TaskhubError):
    """Missing or invalid credentials."""

    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message=message, code="AUTHENTICATION_FAILED")


class AuthorizationError(TaskhubError):
    """Actor lacks the project role (or tenant) the operation needs."""

    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message=message, code="FORBIDDEN")


class ValidationError(TaskhubError):
    """Request is well-formed but violates a domain rule.

    Examples: self-dependency, cross-project dependency, non-member
    assignee, deleting a task that still has subtasks.
    """

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message=message, code="VALIDATION_ERROR")


class ConflictError(TaskhubError):
    """Operation would duplicate an existing record."""

    status_code = 409

    def __init__(self, message: str):
        super().__init__(message=message, code="CONFLICT")
