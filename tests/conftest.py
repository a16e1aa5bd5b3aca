"""Shared fixtures: in-memory persistence and a scripted stream client."""

import asyncio

import pytest

from ocepa_tutor.controller import ConversationController
from ocepa_tutor.registry import SessionRegistry
from ocepa_tutor.storage import MemoryKeyValueStore, SessionStore
from ocepa_tutor.stream_client import StreamOutcome

END = object()


class ScriptedStreamClient:
    """Stream client whose fragments are pushed by the test, one at a time.

    It deliberately ignores the cancellation token while delivering so tests
    can check that the controller itself refuses late fragments.
    """

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.calls: list[list] = []

    def push(self, *items):
        for item in items:
            self.queue.put_nowait(item)

    def finish(self):
        self.queue.put_nowait(END)

    async def stream(self, history, on_fragment, token):
        self.calls.append(list(history))
        while True:
            item = await self.queue.get()
            if item is END:
                break
            if isinstance(item, BaseException):
                raise item
            on_fragment(item)
        return StreamOutcome.CANCELLED if token.cancelled else StreamOutcome.COMPLETED


async def settle(rounds: int = 5):
    """Let pending tasks run up to their next suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv):
    return SessionStore(kv)


@pytest.fixture
def registry(store):
    reg = SessionRegistry(store)
    reg.restore()
    return reg


@pytest.fixture
def client():
    return ScriptedStreamClient()


@pytest.fixture
def controller(registry, client):
    return ConversationController(registry, client)
