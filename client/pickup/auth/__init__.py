"""Identity module (backend login + secure token storage).

Services:
    - AuthService: login/register/logout and identity resume.
    - InMemorySecureStore: TTL-bounded secret store behind ``SecureStore``.
"""
from .credential_store import InMemorySecureStore, SecureStore
from .service import AuthError, AuthService, Identity

__all__ = ["AuthError", "AuthService", "Identity", "InMemorySecureStore", "SecureStore"]
