import asyncio
import logging
import websockets
from typing import Iterable, Optional, Set

from app.services.nostr_event import Event, event_message

logger = logging.getLogger(__name__)


class RelayBroadcaster:
    """Best-effort publish of one event to many relays.

    Every relay is attempted independently; a relay that cannot be reached
    is logged and skipped. "Published" means the EVENT frame was sent, no
    OK response is awaited. At most max_concurrent_relays connections are
    open at once for a single broadcast.
    """

    def __init__(
        self,
        connect_timeout: Optional[float] = 10,
        close_timeout: Optional[float] = 2,
        max_concurrent_relays: int = 32
    ):
        self.connect_timeout = connect_timeout
        self.close_timeout = close_timeout
        self.max_concurrent_relays = max_concurrent_relays

    async def _send_event_to_relay(self, relay_url: str, message: str) -> bool:
        """Send event to a single relay"""
        try:
            async with websockets.connect(
                relay_url,
                open_timeout=self.connect_timeout,
                close_timeout=self.close_timeout
            ) as websocket:
                await websocket.send(message)
            logger.debug(f"Event sent to {relay_url}")
            return True
        except Exception as e:
            logger.warning(f"Error connecting to {relay_url}: {str(e)}")
            return False

    async def broadcast(self, relays: Iterable[str], event: Event) -> Set[str]:
        """Send the event to every relay, returning the relays that received the frame"""
        relay_list = sorted(set(relays))

        if not event.verify():
            logger.error(f"Refusing to broadcast event {event.id} with an invalid signature")
            return set()

        message = event_message(event)
        slots = asyncio.Semaphore(self.max_concurrent_relays)

        async def send(relay_url: str) -> bool:
            async with slots:
                return await self._send_event_to_relay(relay_url, message)

        results = await asyncio.gather(*(send(relay_url) for relay_url in relay_list))

        delivered = {relay_url for relay_url, sent in zip(relay_list, results) if sent}
        logger.info(f"Broadcasted {event.id} to {len(delivered)}/{len(relay_list)} relays")
        return delivered
