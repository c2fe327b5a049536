"""
Kiosk API targets and the default endpoint mapping.
"""

import json
from typing import Optional

from .types import ApiKeys, Endpoint, EndpointResolver, RequestTarget


XAPP_TOKEN_SAMPLE = json.dumps({
    "xapp_token": "STUBBED_XAPP_TOKEN",
    "expires_in": "2099-01-01T00:00:00Z",
}).encode()

XAUTH_SAMPLE = json.dumps({
    "access_token": "STUBBED_ACCESS_TOKEN",
    "expires_in": "2099-01-01T00:00:00Z",
}).encode()


def xapp_token(keys: Optional[ApiKeys] = None) -> RequestTarget:
    """The bootstrap call that mints an XApp token."""
    keys = keys or ApiKeys()
    return RequestTarget(
        name="xapp_token",
        path="/api/v1/xapp_token",
        parameters={"client_id": keys.key, "client_secret": keys.secret},
        is_token_bootstrap_call=True,
        sample_data=XAPP_TOKEN_SAMPLE,
    )


def xauth(email: str, password: str, keys: Optional[ApiKeys] = None) -> RequestTarget:
    """Exchange user credentials for an access token. Sent without the XApp header."""
    keys = keys or ApiKeys()
    return RequestTarget(
        name="xauth",
        path="/oauth2/access_token",
        parameters={
            "client_id": keys.key,
            "client_secret": keys.secret,
            "email": email,
            "password": password,
            "grant_type": "credentials",
            "scope": "offline_access",
        },
        signs_with_app_token=False,
        sample_data=XAUTH_SAMPLE,
    )


def ping() -> RequestTarget:
    return RequestTarget(name="ping", path="/api/v1/system/ping", sample_data=b'{"ping": "pong"}')


def me() -> RequestTarget:
    return RequestTarget(
        name="me",
        path="/api/v1/me",
        requires_authorization=True,
        sample_data=b'{"id": "stub-user", "name": "Stubbed User"}',
    )


def my_bid_position(artwork_id: str, sale_id: str) -> RequestTarget:
    return RequestTarget(
        name="my_bid_position",
        path="/api/v1/me/bidder_positions",
        parameters={"artwork_id": artwork_id, "sale_id": sale_id},
        requires_authorization=True,
        sample_data=b"[]",
    )


def endpoint_resolver(base_url: str) -> EndpointResolver:
    """Map targets to ``base_url + target.path``. No authentication concerns."""
    base = base_url.rstrip("/")

    def resolve(target: RequestTarget) -> Endpoint:
        return Endpoint(
            url=f"{base}{target.path}",
            method=target.method,
            parameters=dict(target.parameters),
            sample_data=target.sample_data,
        )

    return resolve
