"""
Kiosk Provider

Authenticated request layer for the kiosk API: connectivity gating,
transparent XApp token refresh and authorization checks in front of an
httpx transport.
"""

from .client import (
    OnlineProvider,
    RequestGate,
    RequestState,
    new_default_provider,
    new_authorized_provider,
    stubbing_provider,
)
from .acquirer import TokenAcquirer
from .connectivity import ConnectivitySignal
from .endpoints import endpoint_resolver, me, my_bid_position, ping, xapp_token, xauth
from .errors import (
    ProviderError,
    NotAuthorizedError,
    TokenFetchError,
    TransportError,
    ConfigurationError,
    is_provider_error,
)
from .plugins import NetworkLogger, default_plugins
from .policy import may_proceed
from .storage import EnvironmentSettings, FileSettings, MemorySettings, TokenStore, parse_iso8601
from .transport import HttpxTransport
from .types import (
    AUTHORIZED,
    UNAUTHORIZED,
    ApiKeys,
    Endpoint,
    PersistedSettings,
    Plugin,
    ProviderConfig,
    ProviderIdentity,
    RequestTarget,
    Transport,
)

__version__ = "0.1.0"
__all__ = [
    # Provider
    "OnlineProvider",
    "RequestGate",
    "RequestState",
    "new_default_provider",
    "new_authorized_provider",
    "stubbing_provider",
    "TokenAcquirer",
    "ConnectivitySignal",
    "HttpxTransport",
    "may_proceed",
    # Targets
    "endpoint_resolver",
    "xapp_token",
    "xauth",
    "ping",
    "me",
    "my_bid_position",
    # Types
    "AUTHORIZED",
    "UNAUTHORIZED",
    "ApiKeys",
    "Endpoint",
    "PersistedSettings",
    "Plugin",
    "ProviderConfig",
    "ProviderIdentity",
    "RequestTarget",
    "Transport",
    # Errors
    "ProviderError",
    "NotAuthorizedError",
    "TokenFetchError",
    "TransportError",
    "ConfigurationError",
    "is_provider_error",
    # Plugins
    "NetworkLogger",
    "default_plugins",
    # Storage
    "MemorySettings",
    "FileSettings",
    "EnvironmentSettings",
    "TokenStore",
    "parse_iso8601",
]
