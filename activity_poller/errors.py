"""Error taxonomy shared by the poller modules."""

from typing import Any, Optional


class PollerError(Exception):
    """Base exception for activity-poller."""


class ConfigError(PollerError):
    """Raised when configuration or persisted state is invalid or missing."""


class AuthError(PollerError):
    """Raised when credentials cannot be loaded or are rejected upstream."""


class QuotaExceeded(PollerError):
    """The upstream daily quota is exhausted; the window must not advance."""

    def __init__(self, message: str = "API daily limit exceeded", reason: str = "dailyLimitExceeded"):
        super().__init__(message)
        self.reason = reason


class UpstreamError(PollerError):
    """Non-quota failure talking to the upstream API."""

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status = status
        self.body = body
