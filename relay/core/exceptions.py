"""Error taxonomy surfaced at the relay boundary.

Backend-level failures (busy, timeout, transport errors) are not exceptions:
the backend client reports them as an AttemptOutcome and the dispatch engine
absorbs them. Only the errors below ever leave the gateway.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code: int = 500
    error: str = "Failed to process request"

    def __init__(self, message: str = ""):
        super().__init__(message or self.error)
        self.message = message or self.error

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class AdmissionDeniedError(RelayError):
    """Client exceeded its request quota for the current window."""

    status_code = 429
    error = "Rate limit exceeded"

    def __init__(self, message: str = "Too many requests. Please try again later."):
        super().__init__(message)


class InputValidationError(RelayError):
    """Missing or oversized input; rejected before any backend call."""

    status_code = 400
    error = "Bad Request"


class ConfigurationError(RelayError):
    """The relay cannot reach any backend because it is misconfigured (e.g. no API key)."""

    status_code = 503
    error = "Service unavailable"

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retry"] = False
        return data


class BackendExhaustedError(RelayError):
    """Every catalog entry was tried and failed.

    Raised inside the dispatch engine only; converted into the connectivity
    fallback message before reaching the caller.
    """

    status_code = 503
    error = "All backends unavailable"

    def __init__(self, message: str = "", attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts
