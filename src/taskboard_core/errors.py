"""Error taxonomy shared by the store, access checks and the API layer.

Every error carries the HTTP status it maps to; the API layer turns them
into the standard ``{success: false, message, errors?}`` envelope.
"""
from typing import Optional


class TaskboardError(Exception):
    """Base class for all expected application errors."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[list[dict]] = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationError(TaskboardError):
    """Malformed or out-of-range input."""

    status_code = 400
    default_message = "Validation errors"


class AuthenticationError(TaskboardError):
    """No identity, or the presented identity could not be verified."""

    status_code = 401
    default_message = "Not authorized"


Unauthenticated = AuthenticationError


class InvalidCredentials(AuthenticationError):
    default_message = "Invalid credentials"


class IncorrectPassword(InvalidCredentials):
    """Current password did not match on a password change."""

    status_code = 400
    default_message = "Current password is incorrect"


class InvalidToken(AuthenticationError):
    default_message = "Not authorized, token failed"


class InvalidOrExpiredToken(TaskboardError):
    """Password reset token rejected."""

    status_code = 400
    default_message = "Invalid or expired reset token"


class PermissionDeniedError(TaskboardError):
    """Valid identity without sufficient rights."""

    status_code = 403
    default_message = "Access denied"


AccessDenied = PermissionDeniedError


class Forbidden(PermissionDeniedError):
    """Global role not allowed for the route."""


class NotFoundError(TaskboardError):
    status_code = 404
    default_message = "Not found"


class UserNotFound(NotFoundError):
    default_message = "User not found"


class ProjectNotFound(NotFoundError):
    default_message = "Project not found"


class TaskNotFound(NotFoundError):
    default_message = "Task not found"


class SubtaskNotFound(NotFoundError):
    default_message = "Subtask not found"


class AttachmentNotFound(NotFoundError):
    default_message = "File not found"


class ConflictError(TaskboardError):
    """Request conflicts with current state (surfaced as 400)."""

    status_code = 400
    default_message = "Conflict"


class DuplicateEmail(ConflictError):
    default_message = "User with this email already exists"


class HasDependentTasks(ConflictError):
    default_message = "Cannot delete project with existing tasks. Please delete all tasks first."


class OwnsProjects(ConflictError):
    default_message = "Cannot delete user who owns projects. Please transfer ownership first."


class HasAssignedTasks(ConflictError):
    default_message = "Cannot delete user with assigned tasks. Please reassign tasks first."


class AlreadyMember(ConflictError):
    default_message = "User is already a member of this project"


class OwnerRemoval(ConflictError):
    default_message = "Cannot remove project owner"
