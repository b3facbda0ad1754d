"""Turn join/leave events into system messages for the chat stream."""
import logging
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

from .schemas import Message, MessageKind, PresencePayload, new_system_id
from .transport import USER_JOINED, USER_LEFT

logger = logging.getLogger(__name__)

SYSTEM_SENDER_ID = "system"
SYSTEM_SENDER_NAME = "System"

_TEMPLATES = {
    USER_JOINED: "{username} joined the game",
    USER_LEFT: "{username} left the game",
}


class PresenceNotifier:
    """Builds synthetic ``system`` messages for presence events."""

    def notice(
        self,
        event: str,
        payload: Any,
        active_room: Optional[str],
        now: datetime,
        last_timestamp: Optional[datetime] = None,
    ) -> Optional[Message]:
        """Return the system message for *event*, or None if it does not apply.

        Events naming a different game, events arriving with no active room,
        and malformed payloads yield None.  The timestamp is never earlier
        than *last_timestamp*, so the notice always lands at the end of the
        list without breaking its ordering.
        """
        template = _TEMPLATES.get(event)
        if template is None or active_room is None:
            return None

        try:
            presence = PresencePayload.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Dropping malformed %s payload %r: %s", event, payload, exc)
            return None

        if presence.game_id is not None and presence.game_id != active_room:
            logger.debug(
                "Ignoring %s for game %s (active game %s)",
                event, presence.game_id, active_room,
            )
            return None

        timestamp = now if last_timestamp is None else max(now, last_timestamp)
        return Message(
            id=new_system_id(),
            room_id=active_room,
            sender_id=SYSTEM_SENDER_ID,
            sender_name=SYSTEM_SENDER_NAME,
            body=template.format(username=presence.username),
            timestamp=timestamp,
            kind=MessageKind.SYSTEM,
        )
