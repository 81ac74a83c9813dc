"""Exception hierarchy for the StackMemory pipeline.

Every error carries an HTTP ``status_code`` and a short ``user_message`` that
is safe to return to a client. ``str(exc)`` holds operator detail and is only
ever written to logs.
"""

from __future__ import annotations


class StackMemoryError(Exception):
    """Base class for all pipeline errors."""

    status_code: int = 500
    user_message: str = "Internal server error"

    def __init__(self, detail: str = "", *, user_message: str | None = None) -> None:
        super().__init__(detail or self.user_message)
        if user_message is not None:
            self.user_message = user_message


# ---------------------------------------------------------------------------
# Request / caller errors
# ---------------------------------------------------------------------------


class InvalidRequest(StackMemoryError):
    status_code = 400
    user_message = "Invalid request"


class Unauthorized(StackMemoryError):
    status_code = 401
    user_message = "Unauthorized"


class FeatureForbidden(StackMemoryError):
    """Tier or quota does not allow the requested feature."""

    status_code = 403
    user_message = "This feature requires a Pro plan. Upgrade to unlock it."


class ProjectNotFound(StackMemoryError):
    status_code = 404
    user_message = "Project not found"


# ---------------------------------------------------------------------------
# Crawl errors
# ---------------------------------------------------------------------------


class InvalidReference(StackMemoryError):
    """Repository URL is not a recognisable github.com/<owner>/<repo> reference."""

    status_code = 400
    user_message = "Invalid GitHub repository URL"


class CrawlFailed(StackMemoryError):
    """The repository tree could not be fetched.

    Attributes:
        http_status: Upstream HTTP status, or None for transport failures.
        not_found: True when the repository (or both default branches) 404'd.
    """

    status_code = 502
    user_message = "Failed to fetch repository"

    def __init__(self, detail: str = "", *, http_status: int | None = None) -> None:
        super().__init__(detail)
        self.http_status = http_status
        self.not_found = http_status == 404


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------


class EmbeddingFailed(StackMemoryError):
    status_code = 502
    user_message = "Embedding service unavailable"


class GenerationFailed(StackMemoryError):
    status_code = 502
    user_message = "Generation service unavailable"


class MediaProcessingFailed(StackMemoryError):
    status_code = 502
    user_message = "Media processing failed"


class MediaTimeout(StackMemoryError):
    status_code = 504
    user_message = "Media processing timed out"


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------


class StoreWriteFailed(StackMemoryError):
    status_code = 500
    user_message = "Failed to store indexed content"


class StoreUnavailable(StackMemoryError):
    status_code = 503
    user_message = "Storage unavailable"
