"""
Exception hierarchy for the timed quiz client.
"""


class SessionClientError(Exception):
    """Base exception for session client errors."""
    pass


class AuthorityError(SessionClientError):
    """Raised when a request to the session authority fails."""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class MalformedResponseError(AuthorityError):
    """Raised when the authority answers with a payload we cannot use."""
    pass


class SessionStoreError(SessionClientError):
    """Raised when the persisted session file cannot be written."""
    pass
