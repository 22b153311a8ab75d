"""Outlink exception hierarchy.

Every error raised by the identity layer carries a machine-readable ``code``
and the HTTP status the API maps it to.

Usage:
    from outlink.exceptions import UsernameTaken

    try:
        await service.upsert(principal, auth_id, payload)
    except UsernameTaken as e:
        logger.info("username taken", username_key=e.username_key)
"""

from fastapi import status


class OutlinkError(Exception):
    """Base exception for all Outlink application errors."""

    code = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotAuthenticated(OutlinkError):
    """Caller is not authenticated as the account being written."""

    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED


class ProfileNotFound(OutlinkError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidUsername(OutlinkError):
    code = "INVALID_USERNAME"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class UsernameTaken(OutlinkError):
    """Target username key is owned by a different account."""

    code = "USERNAME_TAKEN"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, username_key: str):
        self.username_key = username_key
        super().__init__(f"Username '{username_key}' is already taken")


class UsernameChangeLimitExceeded(OutlinkError):
    """The account already used its one username change."""

    code = "USERNAME_CHANGE_LIMIT"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current_key: str):
        self.current_key = current_key
        super().__init__("Username can only be changed once")


class RelationshipError(OutlinkError):
    """Invalid friend or block operation (self-reference, blocked peer)."""

    code = "RELATIONSHIP_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST


class StoreUnavailable(OutlinkError):
    """Transient document store failure. Safe to retry; upsert is idempotent."""

    code = "STORE_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class DocumentConflict(StoreUnavailable):
    """A concurrent writer created or moved the document first."""

    code = "DOCUMENT_CONFLICT"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Document '{key}' was created concurrently")


class MigrationPartialFailure(OutlinkError):
    """
    Primary profile write succeeded but cleanup steps did not finish.

    Never raised to API callers; attached to the migration report and logged.
    """

    code = "MIGRATION_PARTIAL"

    def __init__(
        self,
        message: str,
        *,
        pending_rewrites: int = 0,
        pending_deletes: tuple[str, ...] = (),
    ):
        self.pending_rewrites = pending_rewrites
        self.pending_deletes = pending_deletes
        super().__init__(message)
