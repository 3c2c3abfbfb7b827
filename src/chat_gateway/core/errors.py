"""
Gateway error types.

Every error carries the provider it came from so callers can tell a
malformed request from a vendor outage from a vendor schema change.
"""

from typing import Any, Optional


class GatewayError(Exception):
    """Base exception for gateway errors."""

    def __init__(self, message: str, provider: Optional[str] = None):
        self.message = message
        self.provider = provider
        super().__init__(message)

    def __str__(self) -> str:
        if self.provider:
            return f"[{self.provider}] {self.message}"
        return self.message


class GatewayConfigError(GatewayError):
    """Raised when configuration cannot be loaded or is invalid."""
    pass


class ProviderNotFoundError(GatewayError):
    """Raised when a provider is not registered."""
    pass


class InvalidRequestError(GatewayError):
    """Raised when caller-supplied data is malformed. Never retried."""
    pass


class UnsupportedOptionError(GatewayError):
    """Raised when a requested option has no meaning for the provider."""

    def __init__(self, message: str, provider: Optional[str] = None, option: Optional[str] = None):
        super().__init__(message, provider)
        self.option = option


class TransportError(GatewayError):
    """Raised when the connection to the provider fails or times out."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        elapsed_ms: Optional[float] = None,
        timed_out: bool = False,
    ):
        super().__init__(message, provider)
        self.elapsed_ms = elapsed_ms
        self.timed_out = timed_out


class ProviderError(GatewayError):
    """Raised when the provider answers with a non-success status."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        body: Any = None,
    ):
        super().__init__(message, provider)
        self.status_code = status_code
        self.body = body


class AuthenticationError(ProviderError):
    """Raised when the provider rejects the credentials."""
    pass


class RateLimitError(ProviderError):
    """Raised when rate limit is exceeded."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = 429,
        body: Any = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, provider, status_code=status_code, body=body)
        self.retry_after = retry_after


class DecodeError(GatewayError):
    """Raised when a response body does not match the expected schema."""

    def __init__(self, message: str, provider: Optional[str] = None, body: Any = None):
        super().__init__(message, provider)
        self.body = body
