"""
Traffic plugins.

Plugins see every request the transport builds and every response it
receives. They never change the request pipeline.
"""

import logging
from typing import Callable, List, Optional

import httpx

from .types import Plugin, RequestTarget


network_logger = logging.getLogger("kiosk_provider.network")

TargetFilter = Callable[[RequestTarget], bool]

MAX_BODY_CHARS = 500


def _never(_: RequestTarget) -> bool:
    return False


class NetworkLogger:
    """
    Logs outgoing requests and incoming responses.

    ``blacklist`` silences a target entirely; ``whitelist`` additionally logs
    the response body.
    """

    def __init__(
        self,
        whitelist: Optional[TargetFilter] = None,
        blacklist: Optional[TargetFilter] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._whitelist = whitelist or _never
        self._blacklist = blacklist or _never
        self._logger = logger or network_logger

    def will_send(self, request: httpx.Request, target: RequestTarget) -> None:
        if self._blacklist(target):
            return
        self._logger.info("Sending %s %s (%s)", request.method, request.url.path, target.name)

    def did_receive(self, response: httpx.Response, target: RequestTarget) -> None:
        if self._blacklist(target):
            return
        self._logger.info("Received %s for %s", response.status_code, target.name)
        if self._whitelist(target):
            self._logger.info("Body for %s: %s", target.name, response.text[:MAX_BODY_CHARS])


def default_plugins() -> List[Plugin]:
    """Log bid position responses in full, never log pings."""
    return [
        NetworkLogger(
            whitelist=lambda target: target.name == "my_bid_position",
            blacklist=lambda target: target.name == "ping",
        )
    ]
