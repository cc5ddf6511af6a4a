"""Application-level exceptions.

These are business-logic errors, not HTTP errors. The presentation layer
(e.g. FastAPI routes) translates the pre-stream ones into HTTP responses;
the stream controller turns the in-stream ones into ``error`` events.
"""


class DocChatError(Exception):
    """Base class for all docchat business errors."""


# Pre-stream: the event stream is never opened.


class AuthenticationError(DocChatError):
    """No valid caller identity (HTTP 401)."""


class AuthorizationError(DocChatError):
    """The caller does not own the target project (HTTP 403)."""


class ValidationError(DocChatError, ValueError):
    """Empty or malformed request (HTTP 400)."""


# In-stream: the stream ends with exactly one ``error`` event.


class RetrievalUnavailable(DocChatError):
    """The vector index or its embedding dependency is unreachable or misconfigured."""


class ModelUnavailable(DocChatError):
    """The inference backend failed.

    ``partial`` is True when some increments were already delivered.
    """

    def __init__(self, message: str, *, partial: bool = False) -> None:
        super().__init__(message)
        self.partial = partial


# Absorbed: logged, never surfaced to the caller.


class PersistenceFailure(DocChatError):
    """Writing the finished exchange failed."""
