"""
Tests for the Kiosk Provider request pipeline

Covers the RequestGate with an in-memory transport and the OnlineProvider
end to end with mocked HTTP responses.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx
import pytest
import respx

from kiosk_provider import (
    AUTHORIZED,
    UNAUTHORIZED,
    ApiKeys,
    ConfigurationError,
    ConnectivitySignal,
    MemorySettings,
    NotAuthorizedError,
    OnlineProvider,
    ProviderConfig,
    RequestGate,
    RequestTarget,
    TokenAcquirer,
    TokenFetchError,
    TokenStore,
    TransportError,
    me,
    new_authorized_provider,
    new_default_provider,
    ping,
    stubbing_provider,
    xapp_token,
    xauth,
)
from kiosk_provider.client import ACCESS_TOKEN_HEADER, STUB_RESPONSES_KEY, XAPP_TOKEN_HEADER


BASE_URL = "https://api.kiosk.test"
FUTURE = "2099-01-01T00:00:00Z"


class RecordingTransport:
    """In-memory transport recording every send."""

    def __init__(
        self,
        token: Optional[str] = "fresh",
        token_status: int = 200,
        release: Optional[asyncio.Event] = None,
        target_error: Optional[Exception] = None,
        token_error: Optional[Exception] = None,
    ) -> None:
        self.token = token
        self.token_status = token_status
        self.release = release
        self.target_error = target_error
        self.token_error = token_error
        self.calls: List[Tuple[RequestTarget, Dict[str, str]]] = []

    @property
    def token_calls(self) -> int:
        return sum(1 for target, _ in self.calls if target.is_token_bootstrap_call)

    @property
    def target_calls(self) -> List[Tuple[RequestTarget, Dict[str, str]]]:
        return [call for call in self.calls if not call[0].is_token_bootstrap_call]

    async def send(self, target: RequestTarget, headers: Mapping[str, str]) -> httpx.Response:
        self.calls.append((target, dict(headers)))
        if target.is_token_bootstrap_call:
            if self.release is not None:
                await self.release.wait()
            if self.token_error is not None:
                raise self.token_error
            return httpx.Response(
                self.token_status,
                json={"xapp_token": self.token, "expires_in": FUTURE},
            )
        if self.target_error is not None:
            raise self.target_error
        return httpx.Response(200, json={"target": target.name})


def make_gate(
    transport: RecordingTransport,
    *,
    online: Optional[ConnectivitySignal] = None,
    store: Optional[TokenStore] = None,
    x_access_token: Optional[str] = None,
) -> RequestGate:
    store = store or TokenStore(MemorySettings())
    return RequestGate(
        transport,
        store,
        TokenAcquirer(transport, store, xapp_token()),
        online or ConnectivitySignal(online=True),
        UNAUTHORIZED,
        x_access_token=x_access_token,
        debug=True,
    )


def valid_store(token: str = "cached") -> TokenStore:
    store = TokenStore(MemorySettings())
    store.replace(token, datetime.now(timezone.utc) + timedelta(hours=1))
    return store


async def settle() -> None:
    """Let every ready task run up to its next suspension point."""
    for _ in range(10):
        await asyncio.sleep(0)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def valid_config() -> ProviderConfig:
    """Valid configuration for testing."""
    return ProviderConfig(
        base_url=BASE_URL,
        keys=ApiKeys(key="client-key", secret="client-secret"),
        plugins=[],
        timeout=10.0,
        debug=True,
    )


@pytest.fixture
def xapp_response() -> Dict[str, Any]:
    """Mock XApp token response from API."""
    return {"xapp_token": "abc", "expires_in": FUTURE}


# =============================================================================
# Configuration Tests
# =============================================================================

class TestConfiguration:
    """Tests for provider configuration."""

    def test_default_provider_is_unauthorized(self, valid_config: ProviderConfig):
        provider = new_default_provider(valid_config)
        assert not provider.is_authorized()
        assert provider.identity == UNAUTHORIZED

    def test_authorized_provider(self, valid_config: ProviderConfig):
        provider = new_authorized_provider("user-token", valid_config)
        assert provider.is_authorized()
        assert provider.identity == AUTHORIZED

    def test_authorized_provider_requires_token(self, valid_config: ProviderConfig):
        with pytest.raises(ConfigurationError):
            new_authorized_provider("", valid_config)

    def test_missing_base_url(self):
        with pytest.raises(ConfigurationError) as exc_info:
            OnlineProvider(ProviderConfig(base_url=""))
        assert "base_url is required" in str(exc_info.value)

    def test_invalid_base_url(self):
        with pytest.raises(ConfigurationError) as exc_info:
            OnlineProvider(ProviderConfig(base_url="ftp://api.kiosk.test"))
        assert "Invalid base_url" in str(exc_info.value)

    def test_non_positive_timeout(self):
        with pytest.raises(ConfigurationError):
            OnlineProvider(ProviderConfig(base_url=BASE_URL, timeout=0))

    def test_stub_flag_read_from_settings(self, valid_config: ProviderConfig):
        valid_config.settings = MemorySettings({STUB_RESPONSES_KEY: "true"})
        provider = OnlineProvider(valid_config)
        assert provider.is_stubbing()

    def test_explicit_stub_flag_wins_over_settings(self, valid_config: ProviderConfig):
        valid_config.settings = MemorySettings({STUB_RESPONSES_KEY: "true"})
        valid_config.stub_responses = False
        assert not OnlineProvider(valid_config).is_stubbing()

    def test_keys_from_env(self, monkeypatch):
        monkeypatch.setenv("KIOSK_API_KEY", " key ")
        monkeypatch.setenv("KIOSK_API_SECRET", "secret")
        keys = ApiKeys.from_env()
        assert keys == ApiKeys(key="key", secret="secret")
        assert keys.is_valid

    def test_token_loaded_from_settings(self, valid_config: ProviderConfig):
        valid_config.settings = MemorySettings({"TokenKey": "persisted", "TokenExpiry": FUTURE})
        provider = OnlineProvider(valid_config)
        assert provider.token_store.current() == "persisted"
        assert provider.token_store.is_valid()


# =============================================================================
# Request Gate Tests
# =============================================================================

class TestRequestGate:
    """Tests for policy, connectivity and token gating."""

    @pytest.mark.asyncio
    async def test_not_authorized_skips_all_io(self):
        transport = RecordingTransport()
        online = ConnectivitySignal(online=False)
        gate = make_gate(transport, online=online)

        with pytest.raises(NotAuthorizedError) as exc_info:
            await gate.request(me(), UNAUTHORIZED)

        assert exc_info.value.code == "NOT_AUTHORIZED"
        assert exc_info.value.target == "me"
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_authorized_identity_may_send_auth_target(self):
        transport = RecordingTransport()
        gate = make_gate(transport, store=valid_store())

        response = await gate.request(me(), AUTHORIZED)

        assert response.status_code == 200
        assert len(transport.target_calls) == 1

    @pytest.mark.asyncio
    async def test_valid_token_sends_once_without_refresh(self):
        transport = RecordingTransport()
        gate = make_gate(transport, store=valid_store("cached"))

        response = await gate.request(ping())

        assert response.json() == {"target": "ping"}
        assert transport.token_calls == 0
        assert len(transport.calls) == 1
        _, headers = transport.calls[0]
        assert headers[XAPP_TOKEN_HEADER] == "cached"

    @pytest.mark.asyncio
    async def test_invalid_token_refreshes_before_sending(self):
        transport = RecordingTransport(token="fresh")
        store = TokenStore(MemorySettings())
        gate = make_gate(transport, store=store)

        await gate.request(ping())

        assert [target.name for target, _ in transport.calls] == ["xapp_token", "ping"]
        assert transport.calls[0][1] == {}
        assert transport.calls[1][1][XAPP_TOKEN_HEADER] == "fresh"
        assert store.current() == "fresh"

    @pytest.mark.asyncio
    async def test_target_waits_for_refresh_to_settle(self):
        release = asyncio.Event()
        transport = RecordingTransport(release=release)
        gate = make_gate(transport)

        task = asyncio.ensure_future(gate.request(ping()))
        await settle()

        assert transport.token_calls == 1
        assert transport.target_calls == []
        assert not task.done()

        release.set()
        response = await task

        assert response.status_code == 200
        assert len(transport.target_calls) == 1

    @pytest.mark.asyncio
    async def test_bootstrap_target_skips_token_step(self):
        transport = RecordingTransport()
        gate = make_gate(transport)

        await gate.request(xapp_token())

        assert transport.token_calls == 1
        assert XAPP_TOKEN_HEADER not in transport.calls[0][1]

    @pytest.mark.asyncio
    async def test_access_token_header(self):
        transport = RecordingTransport()
        gate = make_gate(transport, store=valid_store(), x_access_token="user-token")

        await gate.request(me(), AUTHORIZED)

        _, headers = transport.calls[0]
        assert headers[ACCESS_TOKEN_HEADER] == "user-token"

    @pytest.mark.asyncio
    async def test_token_fetch_failure_propagates_and_keeps_store(self):
        transport = RecordingTransport(token_status=500)
        store = TokenStore(MemorySettings())
        expired = datetime.now(timezone.utc) - timedelta(minutes=5)
        store.replace("stale", expired)
        gate = make_gate(transport, store=store)

        with pytest.raises(TokenFetchError) as exc_info:
            await gate.request(ping())

        assert exc_info.value.status_code == 500
        assert transport.target_calls == []
        assert store.current() == "stale"
        assert store.expiry == expired

    @pytest.mark.asyncio
    async def test_unexpected_bootstrap_failure_becomes_token_fetch_error(self):
        cause = ConnectionResetError("peer reset")
        transport = RecordingTransport(token_error=cause)
        gate = make_gate(transport)

        with pytest.raises(TokenFetchError) as exc_info:
            await gate.request(ping())

        assert exc_info.value.cause is cause
        assert transport.target_calls == []
        assert not gate.refresh_in_flight

    @pytest.mark.asyncio
    async def test_xauth_is_sent_without_xapp_header(self):
        transport = RecordingTransport()
        gate = make_gate(transport, store=valid_store(), x_access_token="user-token")

        await gate.request(xauth("user@example.com", "hunter2", ApiKeys(key="k", secret="s")))
        await gate.request(ping())

        (xauth_target, xauth_headers), (_, ping_headers) = transport.calls
        assert xauth_target.name == "xauth"
        assert XAPP_TOKEN_HEADER not in xauth_headers
        assert xauth_headers[ACCESS_TOKEN_HEADER] == "user-token"
        assert ping_headers[XAPP_TOKEN_HEADER] == "cached"

    @pytest.mark.asyncio
    async def test_transport_error_passes_through(self):
        error = TransportError("connection reset")
        transport = RecordingTransport(target_error=error)
        gate = make_gate(transport, store=valid_store())

        with pytest.raises(TransportError) as exc_info:
            await gate.request(ping())

        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_non_success_target_response_is_returned(self):
        class NotFoundTransport(RecordingTransport):
            async def send(self, target, headers):
                self.calls.append((target, dict(headers)))
                return httpx.Response(404, json={"error": "missing"})

        transport = NotFoundTransport()
        gate = make_gate(transport, store=valid_store())

        response = await gate.request(ping())

        assert response.status_code == 404


# =============================================================================
# Connectivity Gating Tests
# =============================================================================

class TestConnectivityGating:
    """Tests for waiting on the online signal."""

    @pytest.mark.asyncio
    async def test_waits_until_online(self):
        transport = RecordingTransport()
        online = ConnectivitySignal(online=False)
        gate = make_gate(transport, online=online, store=valid_store())

        task = asyncio.ensure_future(gate.request(ping()))
        await settle()
        assert transport.calls == []

        online.set(True)
        await task
        assert len(transport.calls) == 1

        online.set(False)
        online.set(True)
        await settle()
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_flap_after_start_does_not_cancel(self):
        release = asyncio.Event()
        transport = RecordingTransport(release=release)
        online = ConnectivitySignal(online=True)
        gate = make_gate(transport, online=online)

        task = asyncio.ensure_future(gate.request(ping()))
        await settle()
        online.set(False)
        release.set()

        response = await task
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_cancel_while_offline_is_free(self):
        transport = RecordingTransport()
        online = ConnectivitySignal(online=False)
        gate = make_gate(transport, online=online)

        task = asyncio.ensure_future(gate.request(ping()))
        await settle()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        online.set(True)
        await settle()
        assert transport.calls == []


# =============================================================================
# Single-Flight Refresh Tests
# =============================================================================

class TestSingleFlightRefresh:
    """Tests for coalescing concurrent token refreshes."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self):
        release = asyncio.Event()
        transport = RecordingTransport(token="shared", release=release)
        gate = make_gate(transport)

        first = asyncio.ensure_future(gate.request(ping()))
        second = asyncio.ensure_future(gate.request(ping()))
        await settle()

        assert gate.refresh_in_flight
        assert transport.token_calls == 1

        release.set()
        responses = await asyncio.gather(first, second)

        assert [r.status_code for r in responses] == [200, 200]
        assert transport.token_calls == 1
        assert [h[XAPP_TOKEN_HEADER] for _, h in transport.target_calls] == ["shared", "shared"]
        assert not gate.refresh_in_flight

    @pytest.mark.asyncio
    async def test_late_arrival_joins_refresh(self):
        release = asyncio.Event()
        transport = RecordingTransport(release=release)
        gate = make_gate(transport)

        first = asyncio.ensure_future(gate.request(ping()))
        await settle()
        late = asyncio.ensure_future(gate.request(ping()))
        await settle()

        release.set()
        await asyncio.gather(first, late)

        assert transport.token_calls == 1
        assert len(transport.target_calls) == 2

    @pytest.mark.asyncio
    async def test_shared_failure_reaches_every_caller(self):
        release = asyncio.Event()
        transport = RecordingTransport(token_status=500, release=release)
        gate = make_gate(transport)

        first = asyncio.ensure_future(gate.request(ping()))
        second = asyncio.ensure_future(gate.request(ping()))
        await settle()
        release.set()

        results = await asyncio.gather(first, second, return_exceptions=True)

        assert all(isinstance(r, TokenFetchError) for r in results)
        assert results[0] is results[1]
        assert transport.token_calls == 1
        assert transport.target_calls == []

    @pytest.mark.asyncio
    async def test_next_request_after_failure_retries_refresh(self):
        transport = RecordingTransport(token_status=500)
        gate = make_gate(transport)

        with pytest.raises(TokenFetchError):
            await gate.request(ping())

        transport.token_status = 200
        await gate.request(ping())

        assert transport.token_calls == 2

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_refresh(self):
        release = asyncio.Event()
        transport = RecordingTransport(token="kept", release=release)
        store = TokenStore(MemorySettings())
        gate = make_gate(transport, store=store)

        cancelled = asyncio.ensure_future(gate.request(ping()))
        survivor = asyncio.ensure_future(gate.request(ping()))
        await settle()

        cancelled.cancel()
        await settle()
        assert gate.refresh_in_flight

        release.set()
        response = await survivor

        assert cancelled.cancelled()
        assert response.status_code == 200
        assert store.current() == "kept"
        assert transport.token_calls == 1
        assert len(transport.target_calls) == 1


# =============================================================================
# Provider Tests
# =============================================================================

class TestOnlineProvider:
    """End-to-end tests over mocked HTTP."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_fetches_token_then_target(self, valid_config: ProviderConfig, xapp_response: Dict):
        token_route = respx.get(f"{BASE_URL}/api/v1/xapp_token").mock(
            return_value=httpx.Response(200, json=xapp_response)
        )
        ping_route = respx.get(f"{BASE_URL}/api/v1/system/ping").mock(
            return_value=httpx.Response(200, json={"ping": "pong"})
        )

        async with new_default_provider(valid_config) as provider:
            response = await provider.request(ping())

            assert response.json() == {"ping": "pong"}
            assert provider.token_store.current() == "abc"
            assert provider.token_store.is_valid()

        token_request = token_route.calls.last.request
        assert token_request.url.params["client_id"] == "client-key"
        assert token_request.url.params["client_secret"] == "client-secret"
        assert XAPP_TOKEN_HEADER not in token_request.headers
        assert ping_route.calls.last.request.headers[XAPP_TOKEN_HEADER] == "abc"

    @pytest.mark.asyncio
    @respx.mock
    async def test_cached_token_skips_refresh(self, valid_config: ProviderConfig):
        valid_config.settings = MemorySettings({"TokenKey": "cached", "TokenExpiry": FUTURE})
        token_route = respx.get(f"{BASE_URL}/api/v1/xapp_token").mock(
            return_value=httpx.Response(500)
        )
        ping_route = respx.get(f"{BASE_URL}/api/v1/system/ping").mock(
            return_value=httpx.Response(200, json={})
        )

        async with new_default_provider(valid_config) as provider:
            await provider.request(ping())

        assert not token_route.called
        assert ping_route.call_count == 1
        assert ping_route.calls.last.request.headers[XAPP_TOKEN_HEADER] == "cached"

    @pytest.mark.asyncio
    @respx.mock
    async def test_token_server_error(self, valid_config: ProviderConfig):
        respx.get(f"{BASE_URL}/api/v1/xapp_token").mock(return_value=httpx.Response(500))
        ping_route = respx.get(f"{BASE_URL}/api/v1/system/ping").mock(
            return_value=httpx.Response(200, json={})
        )

        async with new_default_provider(valid_config) as provider:
            with pytest.raises(TokenFetchError):
                await provider.request(ping())
            assert provider.token_store.current() is None

        assert not ping_route.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_failure_is_transport_error(self, valid_config: ProviderConfig):
        valid_config.settings = MemorySettings({"TokenKey": "cached", "TokenExpiry": FUTURE})
        respx.get(f"{BASE_URL}/api/v1/system/ping").mock(side_effect=httpx.ConnectError("refused"))

        async with new_default_provider(valid_config) as provider:
            with pytest.raises(TransportError) as exc_info:
                await provider.request(ping())

        assert isinstance(exc_info.value.cause, httpx.ConnectError)

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_is_transport_error(self, valid_config: ProviderConfig):
        valid_config.settings = MemorySettings({"TokenKey": "cached", "TokenExpiry": FUTURE})
        respx.get(f"{BASE_URL}/api/v1/system/ping").mock(side_effect=httpx.ReadTimeout("slow"))

        async with new_default_provider(valid_config) as provider:
            with pytest.raises(TransportError) as exc_info:
                await provider.request(ping())

        assert exc_info.value.details["timeout"] == 10.0

    @pytest.mark.asyncio
    @respx.mock
    async def test_authorized_provider_sends_access_token(self, valid_config: ProviderConfig):
        valid_config.settings = MemorySettings({"TokenKey": "cached", "TokenExpiry": FUTURE})
        me_route = respx.get(f"{BASE_URL}/api/v1/me").mock(
            return_value=httpx.Response(200, json={"id": "user"})
        )

        async with new_authorized_provider("user-token", valid_config) as provider:
            await provider.request(me())

        headers = me_route.calls.last.request.headers
        assert headers[ACCESS_TOKEN_HEADER] == "user-token"
        assert headers[XAPP_TOKEN_HEADER] == "cached"

    @pytest.mark.asyncio
    async def test_default_provider_rejects_auth_target(self, valid_config: ProviderConfig):
        async with new_default_provider(valid_config) as provider:
            with pytest.raises(NotAuthorizedError):
                await provider.request(me())

    @pytest.mark.asyncio
    async def test_stubbing_provider(self, valid_config: ProviderConfig):
        async with stubbing_provider(valid_config) as provider:
            assert provider.is_stubbing()
            assert provider.online.online

            response = await provider.request(ping())

            assert response.json() == {"ping": "pong"}
            assert provider.token_store.current() == "STUBBED_XAPP_TOKEN"
            assert provider.token_store.is_valid()
