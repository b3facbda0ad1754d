"""Merge history, optimistic sends and live broadcasts into one ordered list.

The list is kept sorted by ``(timestamp, arrival_seq)``: ties on timestamp
fall back to the order in which entries reached the reconciler, so a user's
own send stays ahead of anything that arrives after it.

Optimistic entries (``local-`` IDs) stay pending until a broadcast claims
them.  A broadcast claims a pending entry when it echoes the entry's ID in
``clientId``; otherwise the heuristic applies: same sender, same body, and
timestamps within ``match_window``.  Pending entries older than the window
expire and can no longer be claimed, though they stay visible.

Every visible canonical ID is indexed, so repeated delivery of the same
broadcast is idempotent however long the room runs.
"""
import bisect
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .schemas import Message

logger = logging.getLogger(__name__)

DEFAULT_MATCH_WINDOW = timedelta(seconds=10)


class ReconcileOutcome(str, Enum):
    """What happened to a broadcast handed to the reconciler."""

    APPENDED  = "appended"   # new entry inserted
    REPLACED  = "replaced"   # took the place of a pending optimistic entry
    DUPLICATE = "duplicate"  # canonical ID already visible, ignored


@dataclass
class _Entry:
    message: Message
    seq: int

    @property
    def sort_key(self) -> Tuple[datetime, int]:
        return (self.message.timestamp, self.seq)


class MessageReconciler:
    """Owns the ordered, de-duplicated message list for one room."""

    def __init__(self, match_window: timedelta = DEFAULT_MATCH_WINDOW) -> None:
        self.match_window = match_window
        self._entries: List[_Entry] = []
        # optimistic id -> entry, oldest first
        self._pending: "OrderedDict[str, _Entry]" = OrderedDict()
        # canonical message id -> visible entry
        self._by_id: Dict[str, _Entry] = {}
        self._next_seq = 0

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(entry.message for entry in self._entries)

    @property
    def pending_ids(self) -> Tuple[str, ...]:
        return tuple(self._pending)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def last_timestamp(self) -> Optional[datetime]:
        if not self._entries:
            return None
        return self._entries[-1].message.timestamp

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def reset(self) -> None:
        self._entries.clear()
        self._pending.clear()
        self._by_id.clear()
        self._next_seq = 0

    def seed_history(self, messages: Iterable[Message]) -> int:
        """Insert historical messages, skipping IDs already visible.

        A history row that is the persisted copy of a pending optimistic
        send replaces it, exactly as its broadcast would.

        Returns:
            Number of history messages merged.
        """
        added = 0
        for message in messages:
            if self._is_seen(message.id):
                continue
            self._merge(message)
            added += 1
        return added

    def add_optimistic(self, message: Message) -> None:
        """Show a locally sent message immediately and hold it for reconciliation."""
        if not message.is_optimistic:
            raise ValueError(f"Not an optimistic message id: {message.id!r}")
        entry = self._insert(message)
        self._pending[message.id] = entry

    def append_system(self, message: Message) -> None:
        """Insert a synthetic system message; never deduplicated."""
        self._insert(message)

    def apply_broadcast(self, message: Message, now: datetime) -> ReconcileOutcome:
        """Merge a server-broadcast message.

        Args:
            message: Message as received from the server.
            now: Current time, used to expire stale pending entries.

        Returns:
            The outcome (appended, replaced or duplicate).
        """
        if self._is_seen(message.id):
            return ReconcileOutcome.DUPLICATE

        self._expire_pending(now)
        return self._merge(message)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _merge(self, message: Message) -> ReconcileOutcome:
        match = self._find_pending(message)
        if match is None:
            self._by_id[message.id] = self._insert(message)
            return ReconcileOutcome.APPENDED

        del self._pending[match.message.id]
        self._entries.remove(match)
        # Keep the optimistic entry's arrival slot
        replacement = _Entry(message=message, seq=match.seq)
        bisect.insort(self._entries, replacement, key=lambda e: e.sort_key)
        self._by_id[message.id] = replacement
        logger.debug("Reconciled %s -> %s", match.message.id, message.id)
        return ReconcileOutcome.REPLACED

    def _insert(self, message: Message) -> _Entry:
        entry = _Entry(message=message, seq=self._next_seq)
        self._next_seq += 1
        bisect.insort(self._entries, entry, key=lambda e: e.sort_key)
        return entry

    def _find_pending(self, message: Message) -> Optional[_Entry]:
        if message.client_id and message.client_id in self._pending:
            return self._pending[message.client_id]

        for entry in self._pending.values():
            pending = entry.message
            if pending.sender_id != message.sender_id or pending.body != message.body:
                continue
            if abs(message.timestamp - pending.timestamp) <= self.match_window:
                return entry
        return None

    def _expire_pending(self, now: datetime) -> None:
        expired = [
            pending_id for pending_id, entry in self._pending.items()
            if now - entry.message.timestamp > self.match_window
        ]
        for pending_id in expired:
            del self._pending[pending_id]
        if expired:
            logger.debug("Expired %d unconfirmed optimistic message(s)", len(expired))

    def _is_seen(self, message_id: str) -> bool:
        return message_id in self._by_id
