"""
httpx-backed transport.

Resolves a target to an endpoint, sends it and hands back the raw response.
Status codes are not interpreted here.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from .errors import TransportError
from .types import EndpointResolver, Plugin, RequestTarget


logger = logging.getLogger("kiosk_provider")


class HttpxTransport:
    """Sends targets with an ``httpx.AsyncClient``, or answers them from sample data."""

    def __init__(
        self,
        resolver: EndpointResolver,
        *,
        stub_responses: bool = False,
        plugins: Sequence[Plugin] = (),
        timeout: float = 30.0,
        headers: Optional[Mapping[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._resolver = resolver
        self._stub_responses = stub_responses
        self._plugins: List[Plugin] = list(plugins)
        self._timeout = timeout
        self._custom_headers: Dict[str, str] = dict(headers or {})
        # Created lazily unless supplied
        self._http_client = client

    @property
    def stub_responses(self) -> bool:
        return self._stub_responses

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def build_request(self, target: RequestTarget, headers: Mapping[str, str]) -> httpx.Request:
        """Build the outgoing request for ``target`` with ``headers`` on top."""
        endpoint = self._resolver(target).adding_headers(headers)
        request_headers = {
            "Accept": "application/json",
            **self._custom_headers,
            **endpoint.headers,
        }
        params: Optional[Dict[str, Any]] = None
        body: Optional[Dict[str, Any]] = None
        if endpoint.method == "GET":
            params = dict(endpoint.parameters) or None
        elif endpoint.parameters:
            body = dict(endpoint.parameters)

        return httpx.Request(
            endpoint.method,
            endpoint.url,
            params=params,
            json=body,
            headers=request_headers,
        )

    async def send(self, target: RequestTarget, headers: Mapping[str, str]) -> httpx.Response:
        request = self.build_request(target, headers)
        for plugin in self._plugins:
            plugin.will_send(request, target)

        if self._stub_responses:
            logger.debug("Stubbing response for %s", target.name)
            response = httpx.Response(200, content=self._resolver(target).sample_data, request=request)
        else:
            response = await self._execute(request, target)

        for plugin in self._plugins:
            plugin.did_receive(response, target)
        return response

    async def _execute(self, request: httpx.Request, target: RequestTarget) -> httpx.Response:
        client = self._get_client()
        try:
            response = await client.send(request)
        except httpx.TimeoutException as e:
            raise TransportError(
                f"Request timeout for {target.name}",
                cause=e,
                details={"timeout": self._timeout, "target": target.name},
            ) from e
        except httpx.RequestError as e:
            raise TransportError(str(e) or e.__class__.__name__, cause=e, details={"target": target.name}) from e
        finally:
            # Cookies are never carried between requests
            client.cookies.clear()
        return response

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
