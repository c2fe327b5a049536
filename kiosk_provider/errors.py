"""
Kiosk Provider Error Classes

Every failure surfaced by ``OnlineProvider.request`` is one of these.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class ProviderError(Exception):
    """Base error class for the kiosk provider."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 0,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "name": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class NotAuthorizedError(ProviderError):
    """Target requires authorization but the provider has no logged-in session."""

    def __init__(self, target: str, message: Optional[str] = None):
        super().__init__(
            "NOT_AUTHORIZED",
            message or f"{target} requires an authorized provider",
            401,
            {"target": target},
        )
        self.target = target


class TokenFetchError(ProviderError):
    """The XApp token bootstrap request failed."""

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        status_code: int = 0,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__("TOKEN_FETCH_FAILED", message, status_code, details)
        self.cause = cause


class TransportError(ProviderError):
    """Network error (connection issues, timeouts) while sending a target."""

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__("TRANSPORT_ERROR", message, 0, details)
        self.cause = cause


class ConfigurationError(ProviderError):
    """Configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, 0, details)


def is_provider_error(error: Any) -> bool:
    """Check if error is a ProviderError."""
    return isinstance(error, ProviderError)
