"""CLI interface for ocepa-tutor."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys

import click

from . import __version__
from .config import (
    DATA_DIR,
    PROXY_ENDPOINT,
    PROXY_HOST,
    PROXY_PORT,
    SQLITE_PATH,
    STREAM_RESPONSES,
)
from .controller import ConversationController
from .exceptions import StorageError
from .models import Conversation, Registry, Role
from .registry import SessionRegistry
from .storage import MemoryKeyValueStore, SessionStore, SqliteKeyValueStore
from .stream_client import ResponseStreamClient

HELP_TEXT = """Commands
  /help            Show this help
  /new             Start a new chat
  /list            List chats (* marks the active one)
  /switch N        Make chat N active
  /rename TITLE    Rename the active chat
  /delete [N]      Delete chat N (default: the active one)
  /quit            Leave
Press Ctrl-C while a reply is streaming to stop it.
"""


@click.group()
@click.version_option(version=__version__, prog_name="ocepa-tutor")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
def cli(verbose: bool):
    """ocepa-tutor: Ocepa AI, an A'level science tutor in your terminal.

    Start the proxy with `ocepa-tutor serve` (it needs API_KEY), then chat
    with `ocepa-tutor chat`. Conversations are saved between runs.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def format_conversations(state: Registry) -> list[str]:
    """One line per conversation, newest first, numbered from 1."""
    lines = []
    for i, conv in enumerate(state.conversations, 1):
        marker = "*" if conv.id == state.active_id else " "
        lines.append(f"{marker} {i}. {conv.title}  ({len(conv.messages)} msgs)")
    return lines


def _pick(state: Registry, number: str) -> Conversation:
    try:
        index = int(number)
    except ValueError:
        raise click.ClickException(f"Not a chat number: {number}")
    if not 1 <= index <= len(state.conversations):
        raise click.ClickException(f"No chat number {index}; see /list")
    return state.conversations[index - 1]


def run_command(controller: ConversationController, line: str) -> bool:
    """Run one slash command. Returns False when the session should end."""
    name, _, arg = line.strip().partition(" ")
    arg = arg.strip()
    state = controller.registry.state

    if name in ("/quit", "/exit"):
        return False
    if name == "/help":
        click.echo(HELP_TEXT)
    elif name == "/new":
        controller.create_conversation()
        click.echo("Started a new chat.")
    elif name == "/list":
        click.echo("\n".join(format_conversations(state)))
    elif name == "/switch":
        conv = _pick(state, arg)
        controller.select_conversation(conv.id)
        _print_transcript(conv)
    elif name == "/rename":
        active = controller.registry.active_conversation()
        if active is None or not arg:
            raise click.ClickException("Usage: /rename TITLE")
        controller.rename_conversation(active.id, arg)
    elif name == "/delete":
        target = _pick(state, arg) if arg else controller.registry.active_conversation()
        if target is not None:
            if not click.confirm("Are you sure you want to delete this chat?", default=False):
                click.echo("Kept.")
                return True
            controller.delete_conversation(target.id)
            click.echo(f"Deleted: {target.title}")
    else:
        raise click.ClickException(f"Unknown command {name}; try /help")
    return True


def _print_transcript(conv: Conversation):
    click.echo(click.style(conv.title, bold=True))
    for msg in conv.messages:
        speaker = "you" if msg.role is Role.USER else "tutor"
        click.echo(f"{speaker}> {msg.text}")


async def _send(controller: ConversationController, text: str):
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, controller.stop)
    click.echo("tutor> ", nl=False)
    try:
        await controller.send_message(text)
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGINT)
    click.echo()


@cli.command()
@click.option("--endpoint", default=PROXY_ENDPOINT, show_default=True, help="Proxy URL.")
@click.option(
    "--no-stream",
    is_flag=True,
    default=not STREAM_RESPONSES,
    help="Wait for whole replies instead of streaming them.",
)
@click.option("--ephemeral", is_flag=True, help="Do not load or save conversations.")
def chat(endpoint: str, no_stream: bool, ephemeral: bool):
    """Chat with the tutor in the terminal."""
    kv = MemoryKeyValueStore() if ephemeral else SqliteKeyValueStore(SQLITE_PATH)
    registry = SessionRegistry(SessionStore(kv))
    registry.restore()

    client = ResponseStreamClient(endpoint, streaming=not no_stream)
    controller = ConversationController(registry, client)
    controller.on_fragment(lambda _conversation_id, fragment: click.echo(fragment, nl=False))

    loop = asyncio.new_event_loop()
    click.echo(click.style("Ocepa AI Tutor", bold=True) + ". Type /help for commands.")
    active = registry.active_conversation()
    if active is not None and active.messages:
        _print_transcript(active)
    try:
        while True:
            try:
                line = click.prompt("you", prompt_suffix="> ", default="", show_default=False)
            except (EOFError, click.Abort):
                break
            if not line.strip():
                continue
            try:
                if line.startswith("/"):
                    if not run_command(controller, line):
                        break
                else:
                    loop.run_until_complete(_send(controller, line))
            except click.ClickException as e:
                e.show()
            except click.Abort:
                break
            except StorageError as e:
                click.echo(f"\nCould not save chats: {e}", err=True)
    finally:
        loop.run_until_complete(client.aclose())
        loop.close()
        kv.close()
    click.echo()


@cli.command()
@click.option("--host", default=PROXY_HOST, show_default=True)
@click.option("--port", default=PROXY_PORT, show_default=True, type=int)
def serve(host: str, port: int):
    """Start the proxy that relays chats to Gemini.

    Needs API_KEY (or GOOGLE_API_KEY) in the environment or a .env file.
    """
    import uvicorn

    uvicorn.run("ocepa_tutor.server:app", host=host, port=port)


@cli.command(name="list")
def list_cmd():
    """Show saved conversations."""
    if not SQLITE_PATH.exists():
        click.echo("No saved conversations.")
        return

    kv = SqliteKeyValueStore(SQLITE_PATH)
    try:
        saved = SessionStore(kv).load()
    finally:
        kv.close()
    if not saved:
        click.echo("No saved conversations.")
        return

    state = Registry(conversations=tuple(saved), active_id=saved[0].id)
    click.echo("\n".join(format_conversations(state)))
    click.echo(f"\nLocation: {DATA_DIR}")


@cli.command()
@click.confirmation_option(prompt="This will delete all saved conversations. Are you sure?")
def reset():
    """Delete all saved conversations."""
    if not SQLITE_PATH.exists():
        click.echo("No data to delete.")
        return
    kv = SqliteKeyValueStore(SQLITE_PATH)
    try:
        SessionStore(kv).clear()
    finally:
        kv.close()
    click.echo("Deleted saved conversations.")
