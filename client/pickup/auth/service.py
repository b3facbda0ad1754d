"""Identity resolution for the chat core.

The chat session needs a user ID and display name at connect time.  This
service obtains them through the backend's login/register endpoints and
keeps the session token (plus the user's ID and name) in the secure store
for as long as the store holds them; ``current_identity`` reads them back
until they lapse or ``logout`` removes them.

Usage:
    auth = AuthService(BackendClient(config.backend), InMemorySecureStore())
    identity = await auth.login("ann", "secret")
    ...
    identity = await auth.current_identity()   # None once logged out
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..api.client import BackendClient
from .credential_store import SecureStore

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"
USER_ID_KEY = "_id"
USERNAME_KEY = "username"


class AuthError(Exception):
    """The backend reply did not contain a usable identity."""


@dataclass(frozen=True)
class Identity:
    user_id: str
    username: str
    token: str


class AuthService:
    """Login, register, resume and logout against the game backend."""

    def __init__(self, client: BackendClient, store: SecureStore) -> None:
        self.client = client
        self.store = store

    async def login(self, username: str, password: str) -> Identity:
        data = await self.client.login(username, password)
        return await self._remember(data, username)

    async def register(self, username: str, password: str) -> Identity:
        data = await self.client.register(username, password)
        return await self._remember(data, username)

    async def get_user(self, user_id: str) -> Dict[str, Any]:
        return await self.client.get_user(user_id)

    async def current_identity(self) -> Optional[Identity]:
        """Identity saved by the last login/register, or None."""
        token = await self.store.get(TOKEN_KEY)
        user_id = await self.store.get(USER_ID_KEY)
        username = await self.store.get(USERNAME_KEY)
        if not token or not user_id:
            return None
        return Identity(user_id=user_id, username=username or "", token=token)

    async def logout(self) -> None:
        for key in (TOKEN_KEY, USERNAME_KEY, USER_ID_KEY):
            await self.store.delete(key)
        logger.info("Logged out; stored credentials removed")

    async def _remember(self, data: Any, username: str) -> Identity:
        if not isinstance(data, dict) or not data.get("token"):
            raise AuthError("Auth response carried no token")

        # The backend returns the user either nested under "user" or flat
        user = data.get("user") if isinstance(data.get("user"), dict) else data
        user_id = user.get("_id") or user.get("id") or data.get("userId")
        if not user_id:
            raise AuthError("Auth response carried no user id")
        name = user.get("username") or username

        identity = Identity(user_id=str(user_id), username=name, token=data["token"])
        await self.store.set(TOKEN_KEY, identity.token)
        await self.store.set(USER_ID_KEY, identity.user_id)
        await self.store.set(USERNAME_KEY, identity.username)
        logger.info("Signed in as %s (%s)", identity.username, identity.user_id)
        return identity
