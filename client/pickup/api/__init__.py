"""REST collaborator for the game backend."""
from .client import BackendClient, BackendError

__all__ = ["BackendClient", "BackendError"]
