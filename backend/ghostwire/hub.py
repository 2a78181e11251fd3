from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from .config import Settings, dataset_target_path, resolve_dataset_path
from .document import (
    Document,
    find_profile,
    next_profile_id,
    normalize_document,
    push_audit_entry,
    utc_timestamp,
)
from .errors import CorruptStoreError, InvalidIdentity
from .models import Frame, IdentifyPayload, SendMessagePayload, SyncDBPayload
from .notifier import BroadcastNotifier
from .registry import ConnectionRegistry
from .router import MessageRouter, RoutingResult
from .store import DocumentStore

logger = logging.getLogger(__name__)


def parse_identity(value: Any) -> int:
    """
    Coerce an identify payload value to an identity.

    Accepts non-negative ints and numeric strings ("7", " 7 ").
    Raises InvalidIdentity for anything else.
    """
    if isinstance(value, bool):
        raise InvalidIdentity(f"Invalid profileId: {value!r}")
    if isinstance(value, int):
        identity = value
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        try:
            identity = int(value.strip())
        except ValueError:
            # isdigit() also accepts non-ASCII digits such as "²"
            raise InvalidIdentity(f"Invalid profileId: {value!r}") from None
    else:
        raise InvalidIdentity(f"Invalid profileId: {value!r}")

    if identity < 0:
        raise InvalidIdentity(f"Invalid profileId: {value!r}")
    return identity


class Hub:
    """
    Process-wide service object owning the store, registry, router and notifier.

    Built once per application and handed to every handler; this is the
    operation set the HTTP/WebSocket layer calls into.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.store = DocumentStore(settings.db_path, lock_timeout=settings.lock_timeout)
        self.registry = ConnectionRegistry()
        self.router = MessageRouter(self.store, self.registry, observer_id=settings.OBSERVER_ID)
        self.notifier = BroadcastNotifier(self.store, self.registry)

    # ============================================================
    # Core operations
    # ============================================================

    def connection_opened(self, connection: Any) -> None:
        self.registry.attach(connection)
        logger.info("Client connected. Open connections: %d", len(self.registry))

    async def connection_closed(self, connection: Any) -> None:
        identity = self.registry.detach(connection)
        logger.info(
            "Client disconnected (identity=%s). Open connections: %d",
            identity,
            len(self.registry),
        )
        if identity is not None:
            await self.notifier.broadcast_full_state()

    async def identify(self, connection: Any, profile_id: Any) -> int:
        identity = parse_identity(profile_id)
        self.registry.bind(identity, connection)
        logger.info(
            "Client identified with profileId: %s. Live identities: %d",
            identity,
            len(self.registry.live_identities()),
        )
        await self.notifier.broadcast_full_state()
        return identity

    async def replace_document(self, new_document: Any) -> Document:
        doc = await self.store.write(new_document)
        logger.info(
            "Document replaced: %d profiles, %d chats",
            len(doc["profiles"]),
            len(doc["chats"]),
        )
        await self.notifier.broadcast_full_state()
        return doc

    async def send_message(self, from_id: int, to_id: int, text: str) -> RoutingResult:
        return await self.router.route(from_id, to_id, text)

    async def get_document(self) -> Document:
        return await self.store.read()

    def connected_clients(self) -> List[int]:
        return sorted(self.registry.live_identities())

    # ============================================================
    # Wire dispatch
    # ============================================================

    async def handle_frame(self, connection: Any, raw: str) -> Optional[str]:
        """
        Dispatch one inbound text frame. Returns the action handled, or None
        for an unknown action.

        Raises json.JSONDecodeError, pydantic.ValidationError or a
        GhostwireError; the caller logs those and keeps the connection open.
        """
        frame = Frame.model_validate(json.loads(raw))
        logger.debug("Received action: %s", frame.action)

        if frame.action == "identify":
            payload = IdentifyPayload.model_validate(frame.payload or {})
            await self.identify(connection, payload.profileId)
        elif frame.action == "syncDB":
            SyncDBPayload.model_validate(frame.payload or {})
            await self.replace_document(frame.payload)
        elif frame.action == "sendMessage":
            payload = SendMessagePayload.model_validate(frame.payload or {})
            await self.send_message(payload.fromId, payload.toId, payload.text)
        else:
            logger.warning("Unknown action: %s", frame.action)
            return None
        return frame.action

    # ============================================================
    # Peripheral operations
    # ============================================================

    async def create_profile(self, name: str, fields: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        def add(doc):
            new_id = next_profile_id(doc["profiles"])
            profile = {
                "id": new_id,
                "name": name,
                "type": "citizen",
                "settings": {"isPrivate": False},
                "info": {},
                "friends": [],
                "posts": [],
                "gallery": [],
            }
            profile.update(fields or {})
            profile["id"] = new_id
            doc["profiles"].append(profile)
            push_audit_entry(doc, "SYSTEM", f'Profile "{name}" created (Profile-ID: {new_id})')
            return profile

        profile = await self.store.with_exclusive_access(add, name="createProfile")
        logger.info("Created profile %s (%s)", profile["id"], name)
        await self.notifier.broadcast_full_state()
        return profile

    async def log_activity(self, profile_id: int, action: str, details: Any = None) -> bool:
        # Unknown profiles are never written
        doc = await self.store.read()
        if find_profile(doc, profile_id) is None:
            return False

        limit = self.settings.ACTIVITY_LOG_LIMIT

        def record(doc):
            profile = find_profile(doc, profile_id)
            if profile is None:
                return False
            log = profile.setdefault("activityLog", [])
            log.append({"timestamp": utc_timestamp(), "action": action, "details": details})
            if len(log) > limit:
                del log[: len(log) - limit]
            return True

        return await self.store.with_exclusive_access(record, name="logActivity")

    def list_datasets(self) -> List[str]:
        data_dir = self.settings.DATA_DIR
        if not data_dir.is_dir():
            return []
        return sorted(
            p.name
            for p in data_dir.glob("*.json")
            if p.is_file() and p.name != self.settings.DB_FILENAME
        )

    async def switch_dataset(self, filename: str) -> Document:
        path = resolve_dataset_path(self.settings, filename)
        content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        try:
            raw = json.loads(content) if content.strip() else None
        except json.JSONDecodeError as e:
            raise CorruptStoreError(f"Dataset {filename} is not valid JSON: {e}") from e

        logger.info("Switching active dataset to %s", filename)
        return await self.replace_document(raw)

    async def save_dataset(self, filename: str, data: Any) -> str:
        """Store `data` as a named dataset next to the active document. Returns the file name."""
        path = dataset_target_path(self.settings, filename)
        doc = normalize_document(data)
        await DocumentStore(path).write(doc)
        logger.info("Saved dataset %s", path.name)
        return path.name

    async def log_profile_update(
        self,
        profile_id: int,
        changes: List[str],
        username: Optional[str] = None,
    ) -> bool:
        """Record an EDIT entry in the wire log. Nothing is written for an empty change list."""
        if not changes:
            return False

        def record(doc):
            profile = find_profile(doc, profile_id)
            label = profile.get("name") if profile else f"ID:{profile_id}"
            return push_audit_entry(
                doc,
                "EDIT",
                f'Analyst "{username or "Unknown"}" (Profile: {label}) changed profile: {", ".join(changes)}',
            )

        return await self.store.with_exclusive_access(record, name="logProfileUpdate")
