"""
Error taxonomy for the Gmail viewer.

Services raise these; main.py maps them to HTTP responses with a
structured {error, message} body.
"""


class GmailViewerError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message: Human-readable description
        error: Short error title returned to clients
        status_code: HTTP status the API layer responds with
    """
    status_code = 500
    error = "Internal Server Error"

    def __init__(self, message: str, error: str = None, status_code: int = None):
        self.message = message
        if error is not None:
            self.error = error
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class AuthRequiredError(GmailViewerError):
    """No usable access token for the account."""
    status_code = 401
    error = "Authentication required"


class TokenRefreshError(GmailViewerError):
    """The OAuth provider refused to refresh the access token."""
    status_code = 401
    error = "Token refresh failed"


class MailboxConnectionError(GmailViewerError):
    """IMAP handshake or login failed."""
    status_code = 502
    error = "Mailbox connection failed"

    def __init__(self, message: str, auth_failed: bool = False):
        super().__init__(message)
        self.auth_failed = auth_failed
        if auth_failed:
            self.status_code = 401
            self.error = "Gmail authentication failed"


class FolderError(GmailViewerError):
    """Folder does not exist or cannot be opened."""
    status_code = 404
    error = "Folder not available"


class NotFoundError(GmailViewerError):
    status_code = 404
    error = "Not Found"


class MailboxNotFoundError(NotFoundError):
    """A UID did not resolve to a message on the server."""
    error = "Message not found on server"


class ParseError(GmailViewerError):
    """Message body could not be parsed. Never surfaces to clients."""
    error = "Parse Error"


class ValidationError(GmailViewerError):
    status_code = 400
    error = "Validation Error"


class ConflictError(GmailViewerError):
    status_code = 409
    error = "Conflict"
