"""Load the persisted message log for a game.

A failed load is never fatal: the caller gets an empty list plus an error
string, and the chat keeps working on live events alone.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

import httpx
from pydantic import ValidationError

from ..api.client import BackendClient, BackendError
from .schemas import Message, with_default_room

logger = logging.getLogger(__name__)


@dataclass
class HistoryLoad:
    """Result of a history fetch.

    Attributes:
        messages: Messages sorted by timestamp, oldest first.
        error: Description of a recoverable failure, or None.
        dropped: Number of malformed items skipped.
    """
    messages: List[Message] = field(default_factory=list)
    error: Optional[str] = None
    dropped: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


class MessageHistoryLoader:
    """Fetches ``GET /message/{gameId}`` and normalizes the result."""

    def __init__(self, client: BackendClient) -> None:
        self.client = client

    async def load_history(self, room_id: str) -> HistoryLoad:
        try:
            data = await self.client.get_messages(room_id)
        except (httpx.HTTPError, BackendError, ValueError) as exc:
            logger.warning("History load failed for game %s: %s", room_id, exc)
            return HistoryLoad(error=str(exc) or exc.__class__.__name__)

        items = _extract_items(data)
        if items is None:
            logger.warning("Unexpected history payload for game %s: %r", room_id, data)
            return HistoryLoad(error="unexpected history payload")

        messages: List[Message] = []
        dropped = 0
        for item in items:
            try:
                message = Message.model_validate(with_default_room(item, room_id))
            except (ValidationError, TypeError) as exc:
                dropped += 1
                logger.warning("Dropping malformed history item in game %s: %s", room_id, exc)
                continue
            messages.append(message)

        # sorted() is stable, equal timestamps keep server order
        messages = sorted(messages, key=lambda m: m.timestamp)
        logger.info(
            "Loaded %d message(s) for game %s (%d dropped)", len(messages), room_id, dropped
        )
        return HistoryLoad(messages=messages, dropped=dropped)


def _extract_items(data: Any) -> Optional[List[Any]]:
    if data is None:
        return []
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        items = data.get("messages", [])
        return items if isinstance(items, list) else None
    return None

