"""Pickup chat client entry point.

A terminal front end over the chat core: signs in against the backend,
opens the chat for one game and relays typed lines into it.  The mobile
app's screens call the same ``ChatSessionManager`` / ``ChatSession``
interface.

Modules:
    - chat: real-time game chat (session, reconciliation, presence)
    - auth: identity resolution and secure token storage
    - api: REST client for the game backend
"""
import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from pickup.api.client import BackendClient, BackendError
from pickup.auth.credential_store import InMemorySecureStore
from pickup.auth.service import AuthService
from pickup.chat.manager import ChatSessionManager
from pickup.chat.schemas import MessageKind, SessionEvent
from pickup.chat.session import EVENT_DEGRADED, EVENT_HISTORY_ERROR, EVENT_STATE
from pickup.config import AppConfig, load_config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Silence verbose third-party loggers.
# httpx/httpcore log every request; socketio/engineio log every packet.
_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "socketio",
    "socketio.client",
    "engineio",
    "engineio.client",
    "aiohttp",
)

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="pickup-chat",
    help="Chat in a pickup game from the terminal",
    no_args_is_help=True,
    add_completion=False,
)


def configure_logging(level: str = "info") -> None:
    """Configure the root logger and quiet noisy libraries."""
    configured_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=configured_level, format=LOG_FORMAT)
    logging.getLogger().setLevel(configured_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _print_event(event: SessionEvent) -> None:
    if event.kind == EVENT_STATE:
        typer.echo(f"** {event.data.value} **")
    elif event.kind == EVENT_DEGRADED and event.data:
        typer.echo(f"** connection degraded: {event.data} **")
    elif event.kind == EVENT_HISTORY_ERROR:
        typer.echo(f"** could not load earlier messages: {event.data} **")


async def run_chat(config: AppConfig, game_id: str, username: str, password: str) -> None:
    async with BackendClient(config.backend) as client:
        store = InMemorySecureStore(config.credentials.ttl_seconds)
        auth = AuthService(client, store)
        identity = await auth.login(username, password)

        manager = ChatSessionManager.from_config(config, client)
        session = await manager.open(game_id, identity.user_id, identity.username)
        session.subscribe(_print_event)
        shown = 0
        try:
            await session.drain()
            while True:
                for message in session.messages[shown:]:
                    if message.kind == MessageKind.SYSTEM:
                        typer.echo(f"   {message.body}")
                    else:
                        typer.echo(f"[{message.timestamp:%H:%M}] {message.sender_name}: {message.body}")
                shown = len(session.messages)

                line = await asyncio.to_thread(input, "> ")
                if line.strip() in ("/quit", "/exit"):
                    break
                if line.strip() and await session.send(line) is None:
                    typer.echo("** not sent; still connecting. Press enter to retry **")
                elif not line.strip() and session.draft:
                    await session.send(session.draft)
                await session.drain()
        except (EOFError, KeyboardInterrupt):
            pass
        finally:
            await manager.close()
            await auth.logout()


@app.command()
def chat(
    game_id: str = typer.Argument(..., help="Game to open the chat for"),
    username: str = typer.Option(..., "--username", "-u", help="Account name"),
    password: str = typer.Option(
        ..., "--password", "-p", prompt=True, hide_input=True, help="Account password"
    ),
    settings: Optional[Path] = typer.Option(
        None, "--settings", "-s", help="Path to pickup.settings.yaml"
    ),
) -> None:
    """Open the chat for GAME_ID."""
    config = load_config(settings)
    configure_logging(config.logging.level)
    try:
        asyncio.run(run_chat(config, game_id, username, password))
    except BackendError as exc:
        typer.echo(f"Backend error: {exc.detail}", err=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
