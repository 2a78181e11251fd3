from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict

from .document import append_message, conversation_key, utc_timestamp
from .models import MessageRecord, NewMessageBody, NewMessageFrame
from .registry import ConnectionRegistry, Delivery
from .store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class RoutingResult:
    """
    Outcome of routing one chat message.

    branch is one of "peer", "simulation" or "injected".
    deliveries maps each targeted identity to its delivery outcome.
    """
    convo_id: str
    message: MessageRecord
    branch: str
    deliveries: Dict[int, Delivery] = field(default_factory=dict)


class MessageRouter:
    """
    Persists chat messages and fans them out by endpoint liveness.

    - sender and recipient live: both get the frame, observer gets a plain copy
    - only sender live (simulation): sender gets an echo, observer gets a
      copy flagged with isSimulation
    - sender not live (injected on its behalf): recipient gets the frame,
      observer gets a plain copy

    The observer never receives the same frame twice when it is itself one
    of the endpoints.
    """

    def __init__(self, store: DocumentStore, registry: ConnectionRegistry, observer_id: int = 0):
        self.store = store
        self.registry = registry
        self.observer_id = observer_id

    async def route(self, from_id: int, to_id: int, text: str) -> RoutingResult:
        key = conversation_key(from_id, to_id)

        def persist(doc):
            record = MessageRecord(fromId=from_id, toId=to_id, text=text, timestamp=utc_timestamp())
            append_message(doc, key, record.model_dump())
            return record

        # Store errors propagate: an unrecorded message is never delivered
        record = await self.store.with_exclusive_access(persist, name="sendMessage")

        sender_live = self.registry.is_live(from_id)
        recipient_live = self.registry.is_live(to_id)
        observer_live = self.registry.is_live(self.observer_id)

        direct = NewMessageFrame(payload=NewMessageBody(convoId=key, message=record)).to_wire()

        if sender_live and recipient_live:
            branch = "peer"
            targets = [from_id, to_id]
            mirror = direct
        elif sender_live:
            branch = "simulation"
            targets = [from_id]
            mirror = NewMessageFrame(
                payload=NewMessageBody(convoId=key, message=record, isSimulation=True)
            ).to_wire()
        else:
            branch = "injected"
            targets = [to_id]
            mirror = direct

        logger.debug("Routing %s -> %s (%s)", from_id, to_id, branch)

        result = RoutingResult(convo_id=key, message=record, branch=branch)
        for identity in dict.fromkeys(targets):
            result.deliveries[identity] = await self.registry.send(identity, direct)

        if observer_live and self.observer_id not in result.deliveries:
            result.deliveries[self.observer_id] = await self.registry.send(self.observer_id, mirror)

        return result
