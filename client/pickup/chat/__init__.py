"""Real-time game chat.

Provides:
    - ChatSession: connection lifecycle, optimistic sends, ordered messages.
    - ChatSessionManager: keeps at most one live session per client.
    - MessageHistoryLoader: seeds a session from the REST message log.
    - MessageReconciler: merges history, optimistic and broadcast messages.
    - PresenceNotifier: join/leave events as system messages.
"""
from .history import HistoryLoad, MessageHistoryLoader
from .manager import ChatSessionManager
from .presence import PresenceNotifier
from .reconciler import MessageReconciler, ReconcileOutcome
from .schemas import ConnectionState, Message, MessageKind, SessionEvent
from .session import ChatSession
from .transport import RealtimeTransport, SocketIOTransport, TransportError

__all__ = [
    "ChatSession",
    "ChatSessionManager",
    "ConnectionState",
    "HistoryLoad",
    "Message",
    "MessageHistoryLoader",
    "MessageKind",
    "MessageReconciler",
    "PresenceNotifier",
    "RealtimeTransport",
    "ReconcileOutcome",
    "SessionEvent",
    "SocketIOTransport",
    "TransportError",
]
