"""
Kiosk Provider Type Definitions

Request targets, endpoints, provider identity and configuration, plus the
collaborator interfaces the provider is assembled from.
"""

import os
from dataclasses import dataclass, field, replace
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Literal,
    Mapping,
    Optional,
    Protocol,
    runtime_checkable,
)

import httpx

if TYPE_CHECKING:
    from .connectivity import ConnectivitySignal


HTTPMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]

ENV_API_KEY = "KIOSK_API_KEY"
ENV_API_SECRET = "KIOSK_API_SECRET"


@dataclass(frozen=True)
class RequestTarget:
    """A logical API call. Immutable, built by the caller."""

    # Short identifier, used by plugins for whitelisting/blacklisting
    name: str
    # Path relative to the API base URL
    path: str
    method: HTTPMethod = "GET"
    parameters: Mapping[str, Any] = field(default_factory=dict)
    # Only an authorized provider may send this target
    requires_authorization: bool = False
    # True only for the call that fetches the XApp token itself
    is_token_bootstrap_call: bool = False
    # False for targets sent without the X-Xapp-Token header
    signs_with_app_token: bool = True
    # Body returned when responses are stubbed
    sample_data: bytes = b"{}"


@dataclass(frozen=True)
class Endpoint:
    """Concrete request for a target: URL, method, parameters and headers."""

    url: str
    method: HTTPMethod = "GET"
    parameters: Mapping[str, Any] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    sample_data: bytes = b"{}"

    def adding_headers(self, headers: Mapping[str, str]) -> "Endpoint":
        """Return a copy with ``headers`` merged over the existing ones."""
        return replace(self, headers={**self.headers, **headers})


@dataclass(frozen=True)
class ProviderIdentity:
    """Whether a provider represents a logged-in session."""

    is_authorized_context: bool = False


UNAUTHORIZED = ProviderIdentity(is_authorized_context=False)
AUTHORIZED = ProviderIdentity(is_authorized_context=True)


@dataclass(frozen=True)
class ApiKeys:
    """Client credentials sent with the XApp token request."""

    key: str = ""
    secret: str = ""

    @property
    def is_valid(self) -> bool:
        return bool(self.key) and bool(self.secret)

    @classmethod
    def from_env(
        cls,
        key_var: str = ENV_API_KEY,
        secret_var: str = ENV_API_SECRET,
    ) -> "ApiKeys":
        """Read the key pair from environment variables."""
        return cls(
            key=os.environ.get(key_var, "").strip(),
            secret=os.environ.get(secret_var, "").strip(),
        )


EndpointResolver = Callable[[RequestTarget], Endpoint]


@runtime_checkable
class PersistedSettings(Protocol):
    """Key-value store backing the token and the stub flag."""

    def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store a value."""
        ...

    def remove(self, key: str) -> None:
        """Remove a value if present."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Sends a target with extra headers and returns the raw response."""

    async def send(self, target: RequestTarget, headers: Mapping[str, str]) -> httpx.Response:
        ...


@runtime_checkable
class Plugin(Protocol):
    """Observes outgoing requests and incoming responses."""

    def will_send(self, request: httpx.Request, target: RequestTarget) -> None:
        ...

    def did_receive(self, response: httpx.Response, target: RequestTarget) -> None:
        ...


@dataclass
class ProviderConfig:
    """Provider configuration, read once when the provider is built."""

    # API base URL
    base_url: str = "https://api.artsy.net"
    # Client credentials for the XApp token request (default: from env)
    keys: Optional[ApiKeys] = None
    # Maps targets to endpoints (default: endpoint_resolver(base_url))
    endpoint_resolver: Optional[EndpointResolver] = None
    # Answer every request with the target's sample data (default: None,
    # read from the settings key "KioskStubResponses")
    stub_responses: Optional[bool] = None
    # Traffic observers (default: None, uses default_plugins())
    plugins: Optional[List[Plugin]] = None
    # Online/offline signal (default: online, or always online when stubbing)
    online: Optional["ConnectivitySignal"] = None
    # Persisted key-value settings (default: MemorySettings)
    settings: Optional[PersistedSettings] = None
    # Custom transport (default: HttpxTransport)
    transport: Optional[Transport] = None
    # Request timeout in seconds (default: 30)
    timeout: float = 30.0
    # Enable debug logging of the request pipeline (default: False)
    debug: bool = False
    # Custom headers to include in every request
    headers: Optional[Dict[str, str]] = None
