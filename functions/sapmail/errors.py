"""Exceptions raised by the ingestion and reply flows."""


class SapMailError(Exception):
    """Base class for every error raised by sapmail."""


class MailProviderError(SapMailError):
    """Gmail answered with a non-2xx status."""

    def __init__(self, message, status=None, reason=None):
        super().__init__(message)
        self.status = status
        self.reason = reason


class TransientProviderError(MailProviderError):
    """Quota, deadline or connectivity failure worth retrying."""


class PersistenceError(SapMailError):
    """Firestore read or write failed."""


class SendError(SapMailError):
    """A reply could not be dispatched."""


class TicketActionError(SapMailError):
    """A ticket status update request is invalid."""
