"""Comment domain errors.

Every error carries a human readable message and a stable code. The HTTP
layer maps codes to status codes in ``handle_comment_error``.
"""


class CommentError(Exception):
    """Base comment error."""

    def __init__(self, message: str, code: str = "comment_error"):
        self.message = message
        self.code = code
        super().__init__(message)


# ==============================================================================
# Error kinds
# ==============================================================================


class ValidationError(CommentError):
    """Bad input shape or length."""


class NotFoundError(CommentError):
    """Comment, parent or target missing."""


class PermissionDeniedError(CommentError):
    """Not the owner, or not an admin."""


class ConflictError(CommentError):
    """Duplicate action, or comment already in a terminal state."""


class RateLimitExceededError(CommentError):
    """Too many requests from one identity."""

    def __init__(self, message: str = "Too many requests, please try again later"):
        super().__init__(message, "rate_limit_exceeded")


class InvariantViolationError(CommentError):
    """Internal logic error. Correct code never raises it."""


# ==============================================================================
# Named errors
# ==============================================================================


class CommentNotFoundError(NotFoundError):
    """Comment not found."""

    def __init__(self, message: str = "Comment not found"):
        super().__init__(message, "comment_not_found")


class ParentNotFoundError(NotFoundError):
    """Parent comment of a reply not found."""

    def __init__(self, message: str = "Parent comment not found"):
        super().__init__(message, "parent_not_found")


class InvalidTargetError(ValidationError):
    def __init__(self, message: str = "Invalid comment target"):
        super().__init__(message, "invalid_target")


class ContentTooLongError(ValidationError):
    def __init__(self, max_length: int = 2000):
        super().__init__(
            f"Comment cannot be longer than {max_length} characters",
            "content_too_long",
        )


class InvalidContentError(ValidationError):
    def __init__(self, message: str = "Invalid comment content"):
        super().__init__(message, "invalid_content")


class InvalidActionError(ValidationError):
    def __init__(self, action: str):
        super().__init__(f"Invalid action: {action}", "invalid_action")


class NoReportsError(ValidationError):
    def __init__(self, message: str = "Comment has no reports"):
        super().__init__(message, "no_reports")


class DuplicateContentError(ValidationError):
    def __init__(
        self,
        message: str = "You just posted this comment, please wait before posting it again",
    ):
        super().__init__(message, "duplicate_content")


class NotOwnerOrExpiredError(PermissionDeniedError):
    """Only the author may edit, and only inside the edit window."""

    def __init__(
        self,
        message: str = "You cannot edit this comment or the edit window has expired",
    ):
        super().__init__(message, "not_owner_or_expired")


class SelfFlagNotAllowedError(PermissionDeniedError):
    def __init__(self, message: str = "You cannot report your own comment"):
        super().__init__(message, "self_flag_not_allowed")


class DeleteNotAllowedError(PermissionDeniedError):
    def __init__(self, message: str = "You cannot delete this comment"):
        super().__init__(message, "delete_not_allowed")


class AlreadyRemovedError(ConflictError):
    def __init__(self, message: str = "Comment has already been removed"):
        super().__init__(message, "already_removed")


class CommentNotActiveError(ConflictError):
    def __init__(self, message: str = "Comment is not active"):
        super().__init__(message, "comment_not_active")


class AlreadyFlaggedError(ConflictError):
    def __init__(self, message: str = "You have already reported this comment"):
        super().__init__(message, "already_flagged")


class InvalidTransitionError(ConflictError):
    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot change comment status from {current} to {target}",
            "invalid_transition",
        )


class ParentResolutionError(InvariantViolationError):
    """No level-1 ancestor exists for a deep reply."""

    def __init__(self, message: str = "Could not resolve the parent of this reply"):
        super().__init__(message, "parent_resolution_failed")


class HierarchyDepthError(InvariantViolationError):
    def __init__(self, level: int):
        super().__init__(
            f"Computed comment level {level} exceeds the maximum depth",
            "hierarchy_depth_violation",
        )


class InvalidCursorError(ValidationError):
    def __init__(self, message: str = "Invalid or expired pagination cursor"):
        super().__init__(message, "invalid_cursor")
