class SyncError(Exception):
    """Base exception for socialsync domain errors."""

    pass


class NotFoundError(SyncError):
    """Raised when an explicitly requested entity does not exist."""

    pass


class WriteError(SyncError):
    """Raised when a mutation against the datastore fails. Safe to retry."""

    retryable = True


class MembershipWriteError(WriteError):
    """Raised when a conversation membership row could not be written."""

    def __init__(self, conversation_id: str, user_id: str, message: str = "") -> None:
        self.conversation_id = conversation_id
        self.user_id = user_id
        super().__init__(message or f"Could not add {user_id} to conversation {conversation_id}")


class TransientNetworkError(SyncError):
    """Raised when a fetch or subscription failed for a reason expected to clear up."""

    pass


class DegenerateEntityError(SyncError):
    """A conversation exists without its full membership. Logged, not raised."""

    pass
