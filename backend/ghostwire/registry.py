import logging
import threading
from enum import Enum
from typing import Any, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class Delivery(str, Enum):
    DELIVERED = "delivered"
    NOT_CONNECTED = "notConnected"
    FAILED = "failed"


class ConnectionRegistry:
    """
    Tracks open WebSocket connections and which identity each one speaks for.

    A connection is attached as soon as it is accepted (it then receives
    broadcasts) and bound to an identity once it sends `identify`. At most
    one connection is bound per identity; a later bind for the same identity
    replaces the earlier one without notifying it.

    The maps are guarded by their own lock, independent of the document
    store's lock. The lock is never held while awaiting a send.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: Set[Any] = set()
        self._by_identity: Dict[int, Any] = {}
        self._by_connection: Dict[Any, int] = {}
        self._pruned: Dict[Any, int] = {}

    # ---------------- Connection lifecycle ----------------

    def attach(self, connection: Any) -> None:
        with self._lock:
            self._connections.add(connection)

    def detach(self, connection: Any) -> Optional[int]:
        """Forget the connection entirely. Returns the identity it was bound to, if any."""
        with self._lock:
            self._connections.discard(connection)
            identity = self._unbind_locked(connection)
            pruned = self._pruned.pop(connection, None)
            return identity if identity is not None else pruned

    # ---------------- Identity bindings ----------------

    def bind(self, identity: int, connection: Any) -> Optional[Any]:
        """Bind `identity` to `connection`. Returns the displaced connection, if any."""
        with self._lock:
            self._connections.add(connection)
            self._pruned.pop(connection, None)

            # A connection speaks for one identity at a time
            self._unbind_locked(connection)

            previous = self._by_identity.get(identity)
            if previous is not None and previous is not connection:
                self._by_connection.pop(previous, None)

            self._by_identity[identity] = connection
            self._by_connection[connection] = identity

        if previous is not None and previous is not connection:
            logger.info("Identity %s rebound to a new connection", identity)
        return previous if previous is not connection else None

    def unbind(self, connection: Any) -> Optional[int]:
        with self._lock:
            return self._unbind_locked(connection)

    def _unbind_locked(self, connection: Any) -> Optional[int]:
        identity = self._by_connection.pop(connection, None)
        if identity is not None and self._by_identity.get(identity) is connection:
            del self._by_identity[identity]
        return identity

    # ---------------- Lookups ----------------

    def is_live(self, identity: int) -> bool:
        with self._lock:
            return identity in self._by_identity

    def live_identities(self) -> Set[int]:
        with self._lock:
            return set(self._by_identity)

    def connection_for(self, identity: int) -> Optional[Any]:
        with self._lock:
            return self._by_identity.get(identity)

    def connections(self) -> List[Any]:
        with self._lock:
            return list(self._connections)

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    # ---------------- Delivery ----------------

    async def send(self, identity: int, frame: Dict[str, Any]) -> Delivery:
        """
        Deliver a JSON frame to the connection bound to `identity`.

        An unbound identity is the normal offline case and yields
        NOT_CONNECTED. A send that raises is logged, drops the connection
        and yields FAILED.
        """
        connection = self.connection_for(identity)
        if connection is None:
            return Delivery.NOT_CONNECTED
        return await self.deliver(connection, frame)

    async def deliver(self, connection: Any, frame: Dict[str, Any]) -> Delivery:
        """Send one frame. A connection that fails is dropped from the registry."""
        try:
            await connection.send_json(frame)
        except Exception as e:
            logger.warning("Delivery of %s frame failed, dropping connection: %s", frame.get("action"), e)
            self._prune(connection)
            return Delivery.FAILED
        return Delivery.DELIVERED

    def _prune(self, connection: Any) -> None:
        with self._lock:
            self._connections.discard(connection)
            identity = self._unbind_locked(connection)
            if identity is not None:
                # Reported again by detach() when the close event arrives
                self._pruned[connection] = identity
