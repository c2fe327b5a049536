"""
Kiosk Provider - Basic Usage Example

Runs a few requests against stubbed responses, then shows the offline
gating and the authorization check.
"""

import asyncio
import logging

from kiosk_provider import (
    ConnectivitySignal,
    NotAuthorizedError,
    ProviderConfig,
    TokenFetchError,
    TransportError,
    me,
    new_default_provider,
    ping,
    stubbing_provider,
)


async def stubbed_example():
    """Requests answered from sample data, no network needed."""
    print("=== Stubbed Provider Example ===\n")

    async with stubbing_provider(ProviderConfig(debug=True)) as provider:
        response = await provider.request(ping())
        print(f"ping -> {response.status_code} {response.json()}")
        print(f"XApp token: {provider.token_store.current()}")

        try:
            await provider.request(me())
        except NotAuthorizedError as e:
            print(f"me -> rejected before any I/O: {e.code}")


async def offline_example():
    """A request issued while offline is sent once the signal turns true."""
    print("\n=== Offline Example ===\n")

    online = ConnectivitySignal(online=False)
    # stubbing_provider() is always online, so stub through the config instead
    async with new_default_provider(ProviderConfig(online=online, stub_responses=True)) as provider:
        pending = asyncio.ensure_future(provider.request(ping()))
        await asyncio.sleep(0.1)
        print(f"Pending while offline: {not pending.done()}")

        online.set(True)
        response = await pending
        print(f"Sent after coming online: {response.status_code}")


async def live_example():
    """Against the real API (fails without KIOSK_API_KEY / KIOSK_API_SECRET)."""
    print("\n=== Live Example ===\n")

    async with new_default_provider() as provider:
        try:
            response = await provider.request(ping())
            print(f"ping -> {response.status_code}")
        except (TokenFetchError, TransportError) as e:
            print(f"Error (expected without API keys): {e.code}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(stubbed_example())
    asyncio.run(offline_example())
    asyncio.run(live_example())
