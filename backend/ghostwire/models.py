from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


# ============================================================
# WIRE ENVELOPE
# ============================================================

class Frame(BaseModel):
    """Every inbound and outbound WebSocket frame: {action, payload}."""

    action: str
    payload: Any = None


# ============================================================
# INBOUND PAYLOADS
# ============================================================

class IdentifyPayload(BaseModel):
    # Validated by the hub so a bad value surfaces as InvalidIdentity
    profileId: Any = None


class SendMessagePayload(BaseModel):
    fromId: int
    toId: int
    text: str


class SyncDBPayload(BaseModel):
    """Full replacement document; both collections must be present."""

    model_config = ConfigDict(extra="allow")

    profiles: List[Any]
    chats: Dict[str, Any]


# ============================================================
# OUTBOUND FRAMES
# ============================================================

class MessageRecord(BaseModel):
    fromId: int
    toId: int
    text: str
    timestamp: str = Field(..., description="ISO-8601 UTC, assigned at persistence time")


class NewMessageBody(BaseModel):
    convoId: str
    message: MessageRecord
    isSimulation: Optional[bool] = None


class NewMessageFrame(BaseModel):
    action: Literal["newMessage"] = "newMessage"
    payload: NewMessageBody

    def to_wire(self) -> Dict[str, Any]:
        # isSimulation is only present on flagged observer copies
        return self.model_dump(exclude_none=True)


class DbPushFrame(BaseModel):
    action: Literal["dbPush"] = "dbPush"
    payload: Dict[str, Any]
    connectedClients: List[int]

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump()


# ============================================================
# API REQUEST MODELS
# ============================================================

class SwitchDatasetRequest(BaseModel):
    filename: str = Field(..., description="Bare .json file name inside DATA_DIR")


class SaveDatasetRequest(BaseModel):
    filename: str = Field(..., description="Dataset name; .json is appended when missing")
    data: Dict[str, Any]


class ProfileUpdateLogRequest(BaseModel):
    profileId: int
    changes: List[str] = Field(default_factory=list)
    username: Optional[str] = None


class CreateProfileRequest(BaseModel):
    name: str = Field(..., min_length=1)
    fields: Dict[str, Any] = Field(default_factory=dict, description="Extra profile attributes")


class ActivityLogRequest(BaseModel):
    profileId: int
    action: str
    details: Optional[Any] = None


# ============================================================
# API RESPONSE MODELS
# ============================================================

class StatusResponse(BaseModel):
    status: str = "ok"
    connectedClients: List[int] = []


class MessageResponse(BaseModel):
    message: str


class CreateProfileResponse(BaseModel):
    profileId: int
    profile: Dict[str, Any]


class ActivityLogResponse(BaseModel):
    logged: bool


class SaveDatasetResponse(BaseModel):
    message: str
    filename: str
