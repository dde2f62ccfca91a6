"""
Gateway error taxonomy.

The client raises these; workflow nodes catch them at their boundary and
turn them into degraded outputs.
"""
from typing import Optional


class GatewayError(RuntimeError):
    """Base class for all gateway failures."""


class ConfigurationMissingError(GatewayError):
    """Base URL or API key not configured. No network call was attempted."""

    def __init__(self, missing: str):
        self.missing = missing
        super().__init__(f"Gateway not configured: {missing} missing")


class GatewayTimeoutError(GatewayError):
    """A single attempt exceeded the policy timeout and was cancelled."""

    def __init__(self, url: str, timeout: float):
        self.url = url
        self.timeout = timeout
        super().__init__(f"Request to {url} timed out after {timeout}s")


class GatewayConnectionError(GatewayError):
    """Could not reach the gateway (DNS, refused, reset)."""


class HTTPStatusFailure(GatewayError):
    """Terminal HTTP status carrying the code and body text."""

    def __init__(self, status_code: int, body: str, reason: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        detail = f"HTTP {status_code}"
        if reason:
            detail = f"{detail} {reason}"
        super().__init__(f"{detail}: {body[:500]}")


class RetriesExhaustedError(HTTPStatusFailure):
    """Rate limiting (429) or server errors (5xx) persisted past max_retries."""

    def __init__(self, status_code: int, body: str, attempts: int, reason: Optional[str] = None):
        self.attempts = attempts
        super().__init__(status_code, body, reason)


class UnexpectedStatusError(HTTPStatusFailure):
    """Non-retryable HTTP status (4xx other than 429)."""


class ResponseFormatError(GatewayError):
    """Successful status but the body was not JSON."""
