"""
Online/offline signal observed by the request pipeline.

The signal is owned by the application (a reachability monitor, a UI toggle,
a test); the provider only reads it. All methods must be called from the
event loop thread.
"""

import asyncio
import logging
from typing import Callable, List


logger = logging.getLogger("kiosk_provider")

Listener = Callable[[bool], None]


class ConnectivitySignal:
    """A live boolean that can be awaited until it becomes true."""

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: List[Listener] = []
        self._waiters: List["asyncio.Future[bool]"] = []

    @classmethod
    def always_online(cls) -> "ConnectivitySignal":
        """Signal used when responses are stubbed."""
        return cls(online=True)

    @property
    def online(self) -> bool:
        return self._online

    def set(self, online: bool) -> None:
        """Publish a new state; a true value releases every pending waiter."""
        online = bool(online)
        if online != self._online:
            logger.info("Connectivity changed: %s", "online" if online else "offline")
        self._online = online

        if online:
            waiters, self._waiters = self._waiters, []
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(True)

        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.exception("Connectivity listener %r failed", listener)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` on every published state. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def wait_until_online(self) -> None:
        """Return once the signal is true. Already online returns without suspending."""
        if self._online:
            return

        waiter: "asyncio.Future[bool]" = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
