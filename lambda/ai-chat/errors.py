"""
Error types for the ai-chat Lambda.

Each error carries the HTTP status and response body the handler returns,
so helper modules can raise and the handler only has to map.
"""

from typing import Any, Dict, Optional


class ChatError(Exception):
    """Base class for errors that map to an API Gateway response."""

    status_code = 500
    error = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.error)
        self.message = message or self.error

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error}


class InputError(ChatError):
    """Malformed or empty request; no external call is attempted."""

    status_code = 400
    error = "Message is required"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.details = details

    def to_body(self) -> Dict[str, Any]:
        body = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ConfigurationError(ChatError):
    """A required credential is missing. The caller only sees a generic message."""

    error = "AI service not configured"


class UpstreamError(ChatError):
    """Non-success status from the Anthropic API."""

    error = "AI service error"

    def __init__(self, status_code: int, details: str):
        super().__init__(f"{self.error}: {details} (status {status_code})")
        self.status_code = status_code
        self.details = details

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error, "details": self.details}


class UpstreamContractError(ChatError):
    """Success status but the reply body is missing the expected fields."""

    error = "Invalid response from AI service"


class InternalError(ChatError):
    """Anything else, including transport failures. The message is surfaced."""

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message}


class RateLimitExceeded(ChatError):
    """The caller has used up an hourly or daily allowance."""

    status_code = 429
    error = "Rate limit exceeded"

    def __init__(self, decision):
        super().__init__(decision.message)
        self.decision = decision

    def to_body(self) -> Dict[str, Any]:
        body = {"error": self.error}
        body.update(self.decision.to_body())
        return body
