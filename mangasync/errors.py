"""
Error taxonomy for the reconciliation engine.

Item-level errors are caught by the entity syncer and folded into its
report. Only AuthRequired is allowed to unwind a whole sync run.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for all sync errors."""

    reason = "error"

    def __init__(self, message: str = "", cause: Optional[BaseException] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class AuthRequired(SyncError):
    """No valid session, or the remote rejected the credentials."""

    reason = "auth_required"


class RemoteUnavailable(SyncError):
    """Transport failure, timeout, 5xx or an unreadable response."""

    reason = "remote_unavailable"


class SourceNotInstalled(SyncError):
    """The owning source of a record is not installed on this device."""

    reason = "prerequisite_missing"

    def __init__(self, source_id: str):
        super().__init__(f"Source not installed: {source_id}")
        self.source_id = source_id


class IdentityResolutionFailed(SyncError):
    """A canonical identity could not be obtained for a record."""

    reason = "identity_resolution"


class ContentProviderError(SyncError):
    """The content provider could not return details for an entity."""

    reason = "hydration_failed"
