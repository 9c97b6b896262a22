"""Project error hierarchy."""

from __future__ import annotations


class ChatGateError(Exception):
    """Base error."""


class GateRejectedError(ChatGateError):
    """Raised when the access gate refuses a request before any upstream call."""

    status_code = 400
    default_error = "Request rejected"

    def __init__(self, error: str | None = None, message: str | None = None) -> None:
        self.error = error or self.default_error
        self.message = message
        super().__init__(self.error if message is None else f"{self.error}: {message}")

    def to_payload(self) -> dict[str, str]:
        payload = {"error": self.error}
        if self.message:
            payload["message"] = self.message
        return payload


class MethodNotAllowedError(GateRejectedError):
    status_code = 405
    default_error = "Method not allowed"


class AccessDeniedError(GateRejectedError):
    status_code = 403
    default_error = "Access denied: This service is only available from authorized SharePoint domains"


class RateLimitedError(GateRejectedError):
    status_code = 429
    default_error = "Rate limit exceeded"


class InvalidRequestError(GateRejectedError):
    status_code = 400
    default_error = "Invalid request"


class ServiceMisconfiguredError(GateRejectedError):
    status_code = 500
    default_error = "Service configuration error"


class UpstreamError(ChatGateError):
    """Upstream call failed; recovered into an apology event."""


class UpstreamUnavailableError(UpstreamError):
    """Non-success status, network error or timeout."""


class UpstreamMalformedError(UpstreamError):
    """Upstream body could not be read as expected."""
