"""Error taxonomy for the Trac ticket sync pipeline."""

from typing import Optional


class TracSyncError(Exception):
    """Base error for everything raised by the sync pipeline."""


class ConfigurationError(TracSyncError):
    """Raised when configuration cannot be loaded or is invalid."""


class FetchError(TracSyncError):
    """Base error for a failed outbound request."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class NetworkError(FetchError):
    """Connection, DNS or timeout failure while talking to the tracker."""

    def __init__(self, url: str, cause: Exception):
        super().__init__(f"Network error fetching {url}: {cause}", url=url)
        self.cause = cause


class HttpStatusError(FetchError):
    """The tracker answered with a non-2xx status."""

    def __init__(self, status: int, status_text: str, url: Optional[str] = None):
        super().__init__(f"HTTP {status}: {status_text}", url=url)
        self.status = status
        self.status_text = status_text


class PersistenceError(TracSyncError):
    """A ticket could not be written to (or read from) the store."""

    def __init__(self, message: str, ticket_id: Optional[int] = None):
        super().__init__(message)
        self.ticket_id = ticket_id
