from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import CorruptStoreError


CONVERSATION_SEPARATOR = "--"

Document = Dict[str, Any]


def empty_document() -> Document:
    return {"profiles": [], "chats": {}}


def normalize_document(raw: Any) -> Document:
    """
    Bring a freshly parsed document into canonical shape.

    Accepted inputs:
    - None                       -> empty document
    - list (legacy format)       -> {"profiles": raw, "chats": {}}
    - dict                       -> missing "profiles"/"chats" filled in

    Anything else, or collections of the wrong type, is a CorruptStoreError.
    Unknown top-level keys are kept as-is.
    """
    if raw is None:
        return empty_document()

    if isinstance(raw, list):
        return {"profiles": raw, "chats": {}}

    if not isinstance(raw, dict):
        raise CorruptStoreError(f"Document must be an object, got {type(raw).__name__}")

    doc = dict(raw)
    doc.setdefault("profiles", [])
    doc.setdefault("chats", {})

    if not isinstance(doc["profiles"], list):
        raise CorruptStoreError("Document 'profiles' must be a list")
    if not isinstance(doc["chats"], dict):
        raise CorruptStoreError("Document 'chats' must be an object")
    return doc


def conversation_key(a: int, b: int) -> str:
    """
    Symmetric key for the conversation between two identities.

    (7, 5) and (5, 7) both map to "5--7".
    """
    low, high = sorted((int(a), int(b)))
    return f"{low}{CONVERSATION_SEPARATOR}{high}"


def next_profile_id(profiles: List[Dict[str, Any]]) -> int:
    ids = [p.get("id") for p in profiles if isinstance(p, dict)]
    ids = [i for i in ids if isinstance(i, int) and not isinstance(i, bool)]
    return max(ids, default=0) + 1


def find_profile(doc: Document, profile_id: int) -> Optional[Dict[str, Any]]:
    for profile in doc["profiles"]:
        if isinstance(profile, dict) and profile.get("id") == profile_id:
            return profile
    return None


def append_message(doc: Document, key: str, record: Dict[str, Any]) -> List[Dict[str, Any]]:
    conversation = doc["chats"].setdefault(key, [])
    conversation.append(record)
    return conversation


def push_audit_entry(doc: Document, entry_type: str, msg: str) -> bool:
    """
    Insert an entry at the front of the observer's wire log.

    The log lives at profiles[0].systemData.logs and only exists when the
    first profile carries a systemData object. Growth is not capped here.
    """
    if not doc["profiles"]:
        return False

    head = doc["profiles"][0]
    system_data = head.get("systemData") if isinstance(head, dict) else None
    if not isinstance(system_data, dict):
        return False

    logs = system_data.setdefault("logs", [])
    logs.insert(0, {"time": datetime.now().strftime("%H:%M:%S"), "type": entry_type, "msg": msg})
    return True


def utc_timestamp() -> str:
    # Millisecond precision with a trailing Z, e.g. 2024-05-01T12:00:00.123Z
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
