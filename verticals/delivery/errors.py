"""Error taxonomy for the delivery-estimate endpoint.

Each error knows its HTTP status and the message that is safe to show a
storefront. Internal detail stays on the exception (``detail``) and goes to
logs and metrics only.
"""

from __future__ import annotations


class EstimateError(Exception):
    """Base class for terminal estimate failures."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: str | None = None, *, detail: str | None = None):
        self.message = message or self.public_message
        self.detail = detail or self.message
        super().__init__(self.message)

    def to_body(self) -> dict:
        return {"error": self.message}


class ValidationError(EstimateError):
    """Client-correctable request problem. The message names the bad field."""

    status_code = 400
    public_message = "Invalid request"


class RateLimited(EstimateError):
    """Too many requests from one client IP."""

    status_code = 429
    public_message = "Too many requests"

    def __init__(self, retry_after: int, *, ip: str | None = None):
        super().__init__(detail=f"Rate limit exceeded for {ip or 'unknown'}")
        self.retry_after = retry_after
        self.ip = ip

    def to_body(self) -> dict:
        return {"error": self.message, "retryAfter": self.retry_after}


class UpstreamFetchError(EstimateError):
    """The rule store failed or timed out. Not retried inline."""

    status_code = 500
    public_message = "Failed to fetch delivery estimate"


class InternalError(EstimateError):
    """Catch-all for unexpected exceptions."""

    status_code = 500
    public_message = "Internal server error"


class MethodNotAllowed(EstimateError):
    """The estimate endpoint only answers GET and OPTIONS."""

    status_code = 405
    public_message = "Method not allowed"
