"""Project error hierarchy."""

from __future__ import annotations


class SiderGateError(Exception):
    """Base error."""


class InvalidRequestError(SiderGateError):
    """Raised when an inbound Messages request is malformed."""


class AuthenticationError(SiderGateError):
    """Raised when the inbound credential is missing or rejected."""

    def __init__(self, message: str, code: str = "AUTH_ERROR") -> None:
        super().__init__(message)
        self.code = code


class UpstreamError(SiderGateError):
    """Raised when a backend call fails or returns an unusable body."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ConfigurationError(SiderGateError):
    """Raised at startup when no backend can be enabled."""


class RoutingError(SiderGateError):
    """Raised when the routing engine has no backend to choose."""
