"""Chat data models and wire payloads.

Field names are snake_case in Python; the aliases match the keys the game
backend sends and expects (``_id``, ``gameId``, ``userId``, ``username``,
``message``, ``timestamp``, ``messageType``).
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# Prefix for locally generated optimistic message IDs
OPTIMISTIC_ID_PREFIX = "local-"

# Prefix for synthetic presence message IDs
SYSTEM_ID_PREFIX = "system-"

# Epoch values above this are treated as milliseconds
_EPOCH_MS_THRESHOLD = 1e11


# =============================================================================
# Enumerations
# =============================================================================


class MessageKind(str, Enum):
    """Kind of chat message.

    Attributes:
        TEXT: A message written by a participant.
        SYSTEM: A synthetic notice (join/leave) generated on the client.
    """
    TEXT = "text"
    SYSTEM = "system"


class ConnectionState(str, Enum):
    """Lifecycle state of a chat session's real-time connection."""

    DISCONNECTED = "disconnected"
    CONNECTING   = "connecting"
    CONNECTED    = "connected"
    RECONNECTING = "reconnecting"


# =============================================================================
# Timestamps
# =============================================================================


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Normalize a loosely typed timestamp into a tz-aware UTC datetime.

    Accepts ``datetime`` objects (naive ones are taken as UTC), ISO-8601
    strings (a trailing ``Z`` is allowed), and epoch numbers in seconds or
    milliseconds.  ``None`` and empty strings mean "now".

    Raises:
        ValueError: If the value cannot be interpreted as a point in time.
    """
    if value is None or value == "":
        return utcnow()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if abs(value) > _EPOCH_MS_THRESHOLD else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError) as exc:
            raise ValueError(f"Timestamp out of range: {value!r}") from exc
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                return parse_timestamp(float(text))
            except ValueError:
                raise ValueError(f"Invalid timestamp: {value!r}") from None
        return parse_timestamp(parsed)
    raise ValueError(f"Invalid timestamp: {value!r}")


def with_default_room(payload: Any, room_id: str) -> Any:
    """Fill in ``gameId`` on a raw message dict that omits it."""
    if isinstance(payload, dict) and "gameId" not in payload and "room_id" not in payload:
        return {**payload, "gameId": room_id}
    return payload


def new_optimistic_id() -> str:
    return f"{OPTIMISTIC_ID_PREFIX}{uuid.uuid4().hex}"


def new_system_id() -> str:
    return f"{SYSTEM_ID_PREFIX}{uuid.uuid4().hex}"


# =============================================================================
# Message
# =============================================================================


class Message(BaseModel):
    """A single chat message in a game room.

    Attributes:
        id: Unique identifier. Optimistic entries use ``local-`` IDs.
        room_id: Game the message belongs to.
        sender_id: User ID of the sender (``system`` for presence notices).
        sender_name: Display name of the sender.
        body: Message text.
        timestamp: Creation time (UTC).
        kind: ``text`` or ``system``; fixed once created.
        client_id: Optimistic ID echoed back by the server, when it does.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("_id", "id"),
        serialization_alias="_id",
        description="Unique message ID",
    )
    room_id: str = Field(..., alias="gameId", description="Game/room ID")
    sender_id: str = Field(..., alias="userId", description="Sender's user ID")
    sender_name: str = Field(default="", alias="username", description="Sender's display name")
    body: str = Field(..., alias="message", description="Message text")
    timestamp: datetime = Field(default_factory=utcnow, description="Creation time (UTC)")
    kind: MessageKind = Field(default=MessageKind.TEXT, alias="messageType")
    client_id: Optional[str] = Field(default=None, alias="clientId")

    @field_validator("timestamp", mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: Any) -> datetime:
        return parse_timestamp(value)

    @field_validator("sender_name", mode="before")
    @classmethod
    def _none_name(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def is_optimistic(self) -> bool:
        return self.id.startswith(OPTIMISTIC_ID_PREFIX)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# =============================================================================
# Wire payloads
# =============================================================================


class SendMessagePayload(BaseModel):
    """Outbound ``send-message`` event body."""
    model_config = ConfigDict(populate_by_name=True)

    game_id: str = Field(..., alias="gameId")
    user_id: str = Field(..., alias="userId")
    username: str
    message: str
    timestamp: datetime
    message_type: MessageKind = Field(default=MessageKind.TEXT, alias="messageType")
    client_id: Optional[str] = Field(default=None, alias="clientId")

    @classmethod
    def from_message(cls, message: Message) -> "SendMessagePayload":
        return cls(
            game_id=message.room_id,
            user_id=message.sender_id,
            username=message.sender_name,
            message=message.body,
            timestamp=message.timestamp,
            message_type=message.kind,
            client_id=message.id,
        )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class PresencePayload(BaseModel):
    """Inbound ``user-joined`` / ``user-left`` event body."""
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(..., min_length=1)
    game_id: Optional[str] = Field(default=None, alias="gameId")


# =============================================================================
# Session events (delivered to subscribers)
# =============================================================================


@dataclass(frozen=True)
class SessionEvent:
    """Notification pushed to session subscribers.

    ``kind`` is one of ``state``, ``messages``, ``history_error`` or
    ``degraded``; ``data`` carries the kind-specific payload (the new
    ``ConnectionState``, the message tuple, or an error string).
    """
    kind: str
    room_id: Optional[str]
    data: Any = None
