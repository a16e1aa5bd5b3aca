"""Conversation controller: dispatches messages and applies streamed replies."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Protocol

from .config import ERROR_FRAGMENT
from .exceptions import StreamFailure
from .models import Conversation, Message, Registry, Role
from .registry import SessionRegistry
from .stream_client import CancellationToken, FragmentCallback, StreamOutcome

logger = logging.getLogger(__name__)

FragmentListener = Callable[[str, str], None]


class StreamClient(Protocol):
    async def stream(
        self,
        history: Sequence[Message],
        on_fragment: FragmentCallback,
        token: CancellationToken,
    ) -> StreamOutcome: ...


class ConversationController:
    """Owns the session registry and runs the send/stream state machine.

    At most one send is in flight at a time. Its fragments always target the
    conversation that was active when it started, whatever is active later.
    """

    def __init__(self, registry: SessionRegistry, client: StreamClient):
        self.registry = registry
        self.client = client
        self._busy = False
        self._token: CancellationToken | None = None
        self._fragment_listeners: list[FragmentListener] = []

    @property
    def busy(self) -> bool:
        return self._busy

    def on_fragment(self, listener: FragmentListener) -> Callable[[], None]:
        """Call ``listener(conversation_id, fragment)`` after each applied fragment."""
        self._fragment_listeners.append(listener)

        def unsubscribe():
            if listener in self._fragment_listeners:
                self._fragment_listeners.remove(listener)

        return unsubscribe

    # -- registry operations ------------------------------------------------

    def create_conversation(self) -> Conversation:
        return self.registry.create_conversation()

    def select_conversation(self, conversation_id: str):
        self.registry.select_conversation(conversation_id)

    def rename_conversation(self, conversation_id: str, title: str):
        self.registry.rename_conversation(conversation_id, title)

    def delete_conversation(self, conversation_id: str):
        self.registry.delete_conversation(conversation_id)

    # -- sending --------------------------------------------------------------

    async def send_message(self, text: str) -> bool:
        """Send ``text`` in the active conversation and stream the reply into it.

        Returns False without touching any state when nothing is active or a
        send is already running.
        """
        active = self.registry.active_conversation()
        if active is None or self._busy:
            return False
        conversation_id = active.id

        user_message = Message(role=Role.USER, text=text)
        state = self.registry.update(
            lambda s: s.with_conversation(conversation_id, lambda c: c.append(user_message))
        )
        # History comes from the write that just happened, never from `active`
        conversation = state.find(conversation_id)
        if conversation is None:
            return False
        history = conversation.messages

        self._busy = True
        token = CancellationToken()
        self._token = token
        placeholder = Message(role=Role.MODEL, text="")
        self.registry.update(
            lambda s: s.with_conversation(conversation_id, lambda c: c.append(placeholder))
        )

        logger.debug("Sending %d messages for %s", len(history), conversation_id)
        try:
            outcome = await self.client.stream(
                history,
                lambda fragment: self._apply_fragment(conversation_id, fragment, token),
                token,
            )
            logger.debug("Reply for %s finished: %s", conversation_id, outcome.value)
        except StreamFailure as e:
            logger.warning("Reply for %s failed: %s", conversation_id, e)
            if not token.cancelled:
                self._apply_fragment(conversation_id, ERROR_FRAGMENT, token)
        finally:
            self._finish(token)
        return True

    def stop(self):
        """Cancel the in-flight reply, keeping whatever text already arrived."""
        token = self._token
        if token is None:
            return
        token.cancel()
        self._finish(token)
        logger.debug("Reply stopped by user")

    def _finish(self, token: CancellationToken):
        # A stopped send may wind down after a new one has started
        if self._token is token:
            self._token = None
            self._busy = False

    def _apply_fragment(self, conversation_id: str, fragment: str, token: CancellationToken):
        if token.cancelled:
            return
        applied = False

        def extend(state: Registry) -> Registry:
            nonlocal applied
            updated = state.with_conversation(
                conversation_id, lambda c: c.extend_reply(fragment)
            )
            applied = updated is not state
            return updated

        self.registry.update(extend)
        if not applied:
            logger.debug("Dropped fragment for missing conversation %s", conversation_id)
            return
        for listener in list(self._fragment_listeners):
            listener(conversation_id, fragment)
