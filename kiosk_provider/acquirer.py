"""
XApp token acquisition.

Sends the bootstrap target, validates the response and records the new
token in the TokenStore. Deciding whether a new token is needed is the
caller's job.
"""

import logging
from typing import Optional

import httpx

from .errors import TokenFetchError
from .storage import TokenStore, parse_iso8601
from .types import RequestTarget, Transport


logger = logging.getLogger("kiosk_provider")

MAX_BODY_CHARS = 300


class TokenAcquirer:
    """Fetches a fresh XApp token and stores it."""

    def __init__(self, transport: Transport, store: TokenStore, target: RequestTarget) -> None:
        self._transport = transport
        self._store = store
        self._target = target

    async def fetch_token(self) -> Optional[str]:
        """
        Request a new token and write it into the store.

        Raises:
            TokenFetchError: transport failure, non-2xx status or a body that
                is not a JSON object. The store is left untouched.
        """
        try:
            response = await self._transport.send(self._target, {})
        except Exception as e:
            logger.warning("XApp token request failed: %s", e)
            raise TokenFetchError(f"XApp token request failed: {e}", cause=e) from e

        if not response.is_success:
            body = response.text[:MAX_BODY_CHARS]
            message = f"XApp token request returned HTTP {response.status_code}"
            logger.warning("XApp token request returned status=%s", response.status_code)
            raise TokenFetchError(
                message,
                cause=_status_error(message, response),
                status_code=response.status_code,
                details={"body": body},
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.warning("XApp token response is not JSON; body=%r", response.text[:120])
            raise TokenFetchError("Invalid XApp token response (not JSON)", cause=e,
                                  status_code=response.status_code) from e
        if not isinstance(data, dict):
            raise TokenFetchError(
                "Invalid XApp token response (not a JSON object)",
                cause=ValueError(f"expected a JSON object, got {type(data).__name__}"),
                status_code=response.status_code,
            )

        token = data.get("xapp_token")
        if not isinstance(token, str):
            token = None
        expiry = parse_iso8601(data.get("expires_in"))
        if expiry is None:
            logger.warning("XApp token response has no usable expiry: %r", data.get("expires_in"))

        self._store.replace(token, expiry)
        logger.info("XApp token refreshed (expires %s)", expiry.isoformat() if expiry else "never set")
        return token


def _status_error(message: str, response: httpx.Response) -> Exception:
    try:
        request = response.request
    except RuntimeError:
        return ValueError(message)
    return httpx.HTTPStatusError(message, request=request, response=response)
