"""
In-memory conversation store.

Every mutation runs to completion synchronously and then notifies all
subscribers before returning, so a view subscribed to the store never
observes a half-applied change.
"""

import logging
from typing import Callable, List, Optional, Tuple, Union

from models.schemas import Conversation, Message, PartsContent, TextContent, utcnow

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class MessageStore:
    def __init__(self):
        self.conversations: List[Conversation] = []
        self.current_id: Optional[str] = None
        self.error: Optional[str] = None
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change callback; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        for listener in list(self._listeners):
            listener()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_conversation(self, conversation_id: Optional[str]) -> Optional[Conversation]:
        if conversation_id is None:
            return None
        for conv in self.conversations:
            if conv.id == conversation_id:
                return conv
        return None

    @property
    def current(self) -> Optional[Conversation]:
        return self.get_conversation(self.current_id)

    def find_message(self, message_id: str) -> Optional[Tuple[Conversation, int]]:
        """Locate the first message with this id across all conversations."""
        for conv in self.conversations:
            for index, msg in enumerate(conv.messages):
                if msg.id == message_id:
                    return conv, index
        return None

    def search(self, term: str) -> List[Conversation]:
        needle = term.strip().lower()
        if not needle:
            return list(self.conversations)
        return [
            conv for conv in self.conversations
            if needle in (conv.title or "").lower()
            or any(needle in msg.text.lower() for msg in conv.messages)
        ]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add_conversation(self, conversation: Conversation):
        if self.get_conversation(conversation.id) is not None:
            raise ValueError(f"Conversation {conversation.id} already exists")
        self.conversations.insert(0, conversation)
        self.current_id = conversation.id
        self._notify()

    def set_current(self, conversation_id: Optional[str]):
        self.current_id = conversation_id
        self._notify()

    def add_message(self, message: Message):
        """Append a message; a second write with the same id is ignored."""
        conv = self.get_conversation(message.conversation_id)
        if conv is None:
            logger.warning("Dropping message %s: no conversation %s", message.id, message.conversation_id)
            return
        if any(m.id == message.id for m in conv.messages):
            logger.debug("Message %s already exists, skipping", message.id)
            return
        conv.messages.append(message)
        conv.updated_at = utcnow()
        self._notify()

    def update_message(self, message_id: str, content: Union[TextContent, PartsContent]):
        found = self.find_message(message_id)
        if found is None:
            return
        conv, index = found
        conv.messages[index].content = content
        conv.updated_at = utcnow()
        self._notify()

    def remove_message(self, message_id: str):
        found = self.find_message(message_id)
        if found is None:
            return
        conv, index = found
        del conv.messages[index]
        conv.updated_at = utcnow()
        self._notify()

    def clear_all(self):
        self.conversations = []
        self.current_id = None
        self._notify()

    def set_error(self, error: Optional[str]):
        self.error = error
        self._notify()

    def clear_error(self):
        self.set_error(None)
