"""In-memory session registry backed by the session store."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from .models import Conversation, Registry, new_conversation_id
from .storage import SessionStore

logger = logging.getLogger(__name__)

Listener = Callable[[Registry], None]


class SessionRegistry:
    """Live collection of conversations plus the active pointer.

    Every change goes through :meth:`update`, which derives the next snapshot
    from the latest committed one. Committed conversation lists are mirrored
    to the store (full list, or a clear when empty) and then broadcast to
    listeners.
    """

    def __init__(self, store: SessionStore | None = None):
        self.store = store
        self._state = Registry()
        self._lock = threading.Lock()
        self._listeners: list[Listener] = []

    @property
    def state(self) -> Registry:
        return self._state

    @property
    def conversations(self) -> tuple[Conversation, ...]:
        return self._state.conversations

    @property
    def active_id(self) -> str | None:
        return self._state.active_id

    def active_conversation(self) -> Conversation | None:
        return self._state.active

    def find(self, conversation_id: str) -> Conversation | None:
        return self._state.find(conversation_id)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, change: Callable[[Registry], Registry]) -> Registry:
        """Apply ``change`` to the latest snapshot and commit the result.

        The snapshot is committed only once the store has accepted it; a
        StorageError leaves the previous snapshot in place and is re-raised.
        """
        with self._lock:
            previous = self._state
            state = change(previous)
            if state is previous:
                return state
            if self.store is not None and state.conversations is not previous.conversations:
                if state.conversations:
                    self.store.save(state.conversations)
                else:
                    self.store.clear()
            self._state = state
        for listener in list(self._listeners):
            listener(state)
        return state

    def restore(self) -> Registry:
        """Seed from the store, then make sure something is active."""
        saved = self.store.load() if self.store is not None else None
        if saved:
            logger.info("Restored %d conversations", len(saved))
            self.update(
                lambda state: Registry(conversations=tuple(saved), active_id=saved[0].id)
            )
        return self.ensure_conversation()

    def ensure_conversation(self) -> Registry:
        """Create one fresh conversation if the registry is empty."""
        if self._state.conversations:
            return self._state
        self.create_conversation()
        return self._state

    def create_conversation(self) -> Conversation:
        conversation = Conversation(id=new_conversation_id())
        self.update(
            lambda state: state.model_copy(
                update={
                    "conversations": (conversation, *state.conversations),
                    "active_id": conversation.id,
                }
            )
        )
        logger.debug("Created conversation %s", conversation.id)
        return conversation

    def select_conversation(self, conversation_id: str):
        self.update(lambda state: state.model_copy(update={"active_id": conversation_id}))

    def rename_conversation(self, conversation_id: str, title: str):
        title = title.strip()
        if not title:
            return
        self.update(
            lambda state: state.with_conversation(conversation_id, lambda c: c.renamed(title))
        )

    def delete_conversation(self, conversation_id: str):
        def remove(state: Registry) -> Registry:
            if state.find(conversation_id) is None:
                return state
            remaining = tuple(c for c in state.conversations if c.id != conversation_id)
            active_id = state.active_id
            if active_id == conversation_id:
                active_id = remaining[0].id if remaining else None
            return Registry(conversations=remaining, active_id=active_id)

        self.update(remove)
        logger.debug("Deleted conversation %s", conversation_id)
        self.ensure_conversation()
