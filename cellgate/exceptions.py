"""Custom exceptions for the rate limiter."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cellgate.services.gcra.models import Decision


class RateLimitError(Exception):
    """Base class for rate limiter exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code so HTTP integrations can map them
    consistently.
    """
    status_code: int = 500

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class InvalidSpecError(RateLimitError, ValueError):
    """Raised when a rate specification or request cost is malformed.

    Always detected locally, before any store interaction.
    Maps to HTTP 400 Bad Request.
    """
    status_code = 400

    def __init__(self, detail: str = "Invalid rate specification"):
        self.detail = detail
        super().__init__(detail)


class StoreUnavailableError(RateLimitError):
    """Raised when the atomic round trip to the shared store fails.

    Covers connection failures, timeouts and script execution errors.
    The limiter never turns this into an allow or deny decision; the
    caller chooses its own fail-open or fail-closed policy.
    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503

    def __init__(self, key: str | None = None, detail: str | None = None):
        self.key = key
        message = detail or "Rate limit store unavailable"
        if key:
            message += f" (key={key})"
        super().__init__(message)


class RateLimitExceededError(RateLimitError):
    """Raised by integrations that prefer an exception over a denied Decision.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, decision: "Decision", detail: str | None = None):
        self.decision = decision
        message = detail or "Rate limit exceeded."
        if decision.retry_after >= 0:
            message += f" Retry after {decision.retry_after:.3f}s."
        else:
            message += " Request cost exceeds bucket capacity."
        super().__init__(message)

    def to_response(self) -> dict:
        """Convert to API response format."""
        return {
            "error": "rate_limit_exceeded",
            "message": self.message,
            "limit": self.decision.limit,
            "remaining": self.decision.remaining,
            "retry_after": self.decision.retry_after,
        }


class ClockSkewWarning(UserWarning):
    """Emitted when the local clock and the store clock disagree beyond tolerance.

    GCRA compares relative deltas only, so minor skew is tolerated and this
    never escalates into a hard failure.
    """
