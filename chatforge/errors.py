"""
Typed errors raised by the session store, the stream client and the artifact extractor.
These are caught by the CLI layers and presented as error panels.
"""


class ChatforgeError(Exception):
    """Base exception for all Chatforge errors."""


class SessionNotFound(ChatforgeError):
    """Raised when a session id does not exist in the store."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class InvalidSessionId(ChatforgeError):
    """Raised when an operation needs an active session and none is set."""

    def __init__(self, message: str = "No active session."):
        super().__init__(message)


class FormatError(ChatforgeError):
    """Raised when a session document cannot be decoded."""


class MissingPathMetadata(ChatforgeError):
    """Raised when a file artifact carries no 'path' metadata key."""


class RequestFailed(ChatforgeError):
    """Raised on transport-level failures (DNS, TLS, connection reset)."""


class InvalidResponse(ChatforgeError):
    """Raised when the completion endpoint answers with a non-success status."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
