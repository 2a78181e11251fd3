import logging

from .models import DbPushFrame
from .registry import ConnectionRegistry, Delivery
from .store import DocumentStore

logger = logging.getLogger(__name__)


class BroadcastNotifier:
    """
    Pushes the full document plus the presence set to every open connection.

    Delivery is best-effort per connection: a connection that fails to accept
    the frame is skipped and the rest still receive it.
    """

    def __init__(self, store: DocumentStore, registry: ConnectionRegistry):
        self.store = store
        self.registry = registry

    async def broadcast_full_state(self) -> int:
        """Returns the number of connections the frame was delivered to."""
        doc = await self.store.read()
        frame = DbPushFrame(
            payload=doc,
            connectedClients=sorted(self.registry.live_identities()),
        ).to_wire()

        delivered = 0
        for connection in self.registry.connections():
            if await self.registry.deliver(connection, frame) is Delivery.DELIVERED:
                delivered += 1

        logger.debug("Broadcast full state to %d connection(s)", delivered)
        return delivered
