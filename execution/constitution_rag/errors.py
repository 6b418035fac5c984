"""
Error taxonomy for the Constitution RAG pipeline.

Every error that may reach a client derives from ConstitutionRAGError and is
rendered by the API as a uniform ``{"error": message}`` body.
"""


class ConstitutionRAGError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ConstitutionRAGError):
    """Raised when a required field is missing or empty."""


class AuthError(ConstitutionRAGError):
    """Raised when the bearer token is missing or cannot be resolved."""


class NotFoundError(ConstitutionRAGError):
    """Raised when a resource does not exist or is owned by someone else.

    The two cases are deliberately indistinguishable to callers.
    """


class UpstreamError(ConstitutionRAGError):
    """Raised when an external provider fails or returns an unexpected shape."""

    provider: str = "upstream"

    def __init__(self, message: str, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamEmbeddingError(UpstreamError):
    provider = "embedding"


class UpstreamCompletionError(UpstreamError):
    provider = "completion"


class SearchError(ConstitutionRAGError):
    """Raised by the vector search service. Never surfaced from a chat turn."""


class TurnCancelledError(ConstitutionRAGError):
    """Raised when the inbound request was aborted mid-turn."""
