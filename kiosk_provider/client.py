"""
Kiosk Provider Client

The request pipeline for the kiosk API. Every request passes the
authorization policy, waits until the device is online, makes sure a valid
XApp token exists (refreshing it at most once at a time across callers) and
is then sent with the token attached.
"""

import asyncio
import dataclasses
import logging
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from .acquirer import TokenAcquirer
from .connectivity import ConnectivitySignal
from .endpoints import endpoint_resolver, xapp_token
from .errors import ConfigurationError, NotAuthorizedError, TokenFetchError
from .plugins import default_plugins
from .policy import may_proceed
from .storage import MemorySettings, TokenStore
from .transport import HttpxTransport
from .types import (
    AUTHORIZED,
    UNAUTHORIZED,
    ApiKeys,
    PersistedSettings,
    ProviderConfig,
    ProviderIdentity,
    RequestTarget,
    Transport,
)


logger = logging.getLogger("kiosk_provider")

XAPP_TOKEN_HEADER = "X-Xapp-Token"
ACCESS_TOKEN_HEADER = "X-Access-Token"
STUB_RESPONSES_KEY = "KioskStubResponses"

TRUTHY = {"1", "true", "yes", "on"}


class RequestState(str, Enum):
    """Stages a single request moves through."""
    IDLE = "idle"
    POLICY_CHECK = "policy_check"
    AWAITING_CONNECTIVITY = "awaiting_connectivity"
    TOKEN_VALID = "token_valid"
    REFRESHING_TOKEN = "refreshing_token"
    REQUESTING = "requesting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RequestGate:
    """
    Orchestrates one request at a time per caller, sharing token state
    between callers.

    Token refreshes are single-flight: the first caller that finds the token
    invalid starts a refresh task, later callers await the same task. Callers
    await it through ``asyncio.shield`` so a cancelled caller never cancels
    a refresh other callers depend on.
    """

    def __init__(
        self,
        transport: Transport,
        store: TokenStore,
        acquirer: TokenAcquirer,
        online: ConnectivitySignal,
        identity: ProviderIdentity = UNAUTHORIZED,
        *,
        x_access_token: Optional[str] = None,
        debug: bool = False,
    ) -> None:
        self._transport = transport
        self._store = store
        self._acquirer = acquirer
        self._online = online
        self._identity = identity
        self._x_access_token = x_access_token
        self._debug = debug

        self._refresh_lock = asyncio.Lock()
        self._refresh_task: "Optional[asyncio.Future[Optional[str]]]" = None

    def _log(self, message: str, *args: Any) -> None:
        if self._debug:
            logger.debug("[Kiosk] " + message, *args)

    def _enter(self, target: RequestTarget, state: RequestState) -> RequestState:
        self._log("%s -> %s", target.name, state.value)
        return state

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    async def request(
        self,
        target: RequestTarget,
        identity: Optional[ProviderIdentity] = None,
    ) -> httpx.Response:
        """
        Send ``target`` once policy, connectivity and token requirements hold.

        Raises:
            NotAuthorizedError: the identity may not send this target; nothing
                else happens.
            TokenFetchError: a required token refresh failed; the target is
                not sent.
            TransportError: the target itself could not be sent.
        """
        identity = identity or self._identity
        self._enter(target, RequestState.IDLE)

        self._enter(target, RequestState.POLICY_CHECK)
        if not may_proceed(identity.is_authorized_context, target.requires_authorization):
            self._enter(target, RequestState.FAILED)
            raise NotAuthorizedError(target.name)

        self._enter(target, RequestState.AWAITING_CONNECTIVITY)
        await self._online.wait_until_online()

        if target.is_token_bootstrap_call or self._store.is_valid():
            self._enter(target, RequestState.TOKEN_VALID)
        else:
            self._enter(target, RequestState.REFRESHING_TOKEN)
            try:
                await self._await_refresh()
            except TokenFetchError:
                self._enter(target, RequestState.FAILED)
                raise

        self._enter(target, RequestState.REQUESTING)
        try:
            response = await self._transport.send(target, self._headers_for(target))
        except Exception:
            self._enter(target, RequestState.FAILED)
            raise

        self._enter(target, RequestState.SUCCEEDED)
        return response

    async def _await_refresh(self) -> None:
        async with self._refresh_lock:
            task = self._refresh_task
            if task is None or task.done():
                if self._store.is_valid():
                    self._log("Token became valid while waiting, skipping refresh")
                    return
                task = asyncio.ensure_future(self._acquirer.fetch_token())
                task.add_done_callback(self._refresh_finished)
                self._refresh_task = task
                self._log("Started XApp token refresh")
            else:
                self._log("Joining in-flight XApp token refresh")
        await asyncio.shield(task)

    def _refresh_finished(self, task: "asyncio.Future[Optional[str]]") -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Retrieve the outcome so an unawaited failure is not reported as lost
        if not task.cancelled() and task.exception() is not None:
            self._log("XApp token refresh failed: %r", task.exception())

    def _headers_for(self, target: RequestTarget) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self._x_access_token:
            headers[ACCESS_TOKEN_HEADER] = self._x_access_token
        # Everything except the token request and unsigned targets is signed
        if target.signs_with_app_token and not target.is_token_bootstrap_call:
            headers[XAPP_TOKEN_HEADER] = self._store.current() or ""
        return headers


class OnlineProvider:
    """
    Kiosk Provider - the entry point for API requests.

    Assembles the transport, token store, token acquirer and connectivity
    signal from a ``ProviderConfig`` once, at construction.
    """

    def __init__(
        self,
        config: ProviderConfig,
        identity: ProviderIdentity = UNAUTHORIZED,
        x_access_token: Optional[str] = None,
    ) -> None:
        """Initialize the provider."""
        self._validate_config(config)

        self._debug = config.debug
        self._identity = identity
        self._settings: PersistedSettings = (
            config.settings if config.settings is not None else MemorySettings()
        )
        self._stub_responses = self._resolve_stub_responses(config)
        self._keys = config.keys or ApiKeys.from_env()

        if not self._stub_responses and not self._keys.is_valid:
            logger.warning("API key or secret missing; XApp token requests will be rejected")

        self._owns_transport = config.transport is None
        self._transport: Transport = config.transport or HttpxTransport(
            config.endpoint_resolver or endpoint_resolver(config.base_url),
            stub_responses=self._stub_responses,
            plugins=config.plugins if config.plugins is not None else default_plugins(),
            timeout=config.timeout,
            headers=config.headers,
        )

        if config.online is not None:
            self._online = config.online
        elif self._stub_responses:
            self._online = ConnectivitySignal.always_online()
        else:
            self._online = ConnectivitySignal(online=True)

        self._token_store = TokenStore(self._settings)
        self._acquirer = TokenAcquirer(self._transport, self._token_store, xapp_token(self._keys))
        self._gate = RequestGate(
            self._transport,
            self._token_store,
            self._acquirer,
            self._online,
            identity,
            x_access_token=x_access_token,
            debug=self._debug,
        )

        if self._debug:
            logger.debug(
                "[Kiosk] OnlineProvider initialized (authorized=%s, stub_responses=%s)",
                identity.is_authorized_context,
                self._stub_responses,
            )

    def _validate_config(self, config: ProviderConfig) -> None:
        """Validate configuration."""
        if config.endpoint_resolver is None and config.transport is None:
            if not config.base_url:
                raise ConfigurationError("base_url is required")
            if not config.base_url.startswith(("http://", "https://")):
                raise ConfigurationError(
                    "Invalid base_url. Expected an http:// or https:// URL",
                    {"base_url": config.base_url},
                )
        if config.timeout <= 0:
            raise ConfigurationError("timeout must be positive", {"timeout": config.timeout})

    def _resolve_stub_responses(self, config: ProviderConfig) -> bool:
        if config.stub_responses is not None:
            return config.stub_responses
        flag = self._settings.get(STUB_RESPONSES_KEY)
        return isinstance(flag, str) and flag.strip().lower() in TRUTHY

    @property
    def identity(self) -> ProviderIdentity:
        return self._identity

    @property
    def online(self) -> ConnectivitySignal:
        return self._online

    @property
    def token_store(self) -> TokenStore:
        return self._token_store

    def is_authorized(self) -> bool:
        """Check if this provider represents a logged-in session."""
        return self._identity.is_authorized_context

    def is_stubbing(self) -> bool:
        """Check if responses are stubbed."""
        return self._stub_responses

    async def request(self, target: RequestTarget) -> httpx.Response:
        """Send ``target`` through the request pipeline."""
        return await self._gate.request(target, self._identity)

    async def close(self) -> None:
        """Close the transport if the provider created it."""
        if self._owns_transport and isinstance(self._transport, HttpxTransport):
            await self._transport.close()

    async def __aenter__(self) -> "OnlineProvider":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


# =============================================================================
# Factory Functions
# =============================================================================

def new_default_provider(config: Optional[ProviderConfig] = None) -> OnlineProvider:
    """Create a provider without a logged-in session."""
    return OnlineProvider(config or ProviderConfig())


def new_authorized_provider(
    x_access_token: str,
    config: Optional[ProviderConfig] = None,
) -> OnlineProvider:
    """Create a provider for a logged-in session."""
    if not x_access_token:
        raise ConfigurationError("x_access_token is required for an authorized provider")
    return OnlineProvider(config or ProviderConfig(), AUTHORIZED, x_access_token)


def stubbing_provider(config: Optional[ProviderConfig] = None) -> OnlineProvider:
    """Create a provider that answers from sample data and is always online."""
    stubbed = dataclasses.replace(
        config or ProviderConfig(),
        stub_responses=True,
        online=ConnectivitySignal.always_online(),
    )
    return OnlineProvider(stubbed)
