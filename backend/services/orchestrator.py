"""
Conversation orchestration
==========================
Turns user actions (send, regenerate, new chat, select, clear) into store
mutations and completion calls.

Each conversation is its own small state machine:

    IDLE --send/regenerate--> AWAITING_REPLY --first fragment--> STREAMING_REPLY
      ^                              |                                 |
      +------ reply / failure -------+--------- [DONE] / failure ------+

The state is claimed synchronously before the first await, so on a single
event loop a second send for the same conversation always sees it busy.
Every path out of a request goes through a `finally` that resets to IDLE.
"""

import datetime
import logging
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

from models.errors import ConfigError, ChatError, UpstreamError
from models.schemas import Attachment, Conversation, Message, PartsContent, TextContent
from services.attachments import AttachmentLoader, file_references
from services.completion import CompletionClient
from services.store import MessageStore
from settings import settings

logger = logging.getLogger(__name__)

ERROR_REPLY = "⚠️ Failed to get a response from the model. Please try again."
CONFIG_ERROR_REPLY = "⚠️ OpenAI API key not configured."

TITLE_LENGTH = 50
DUPLICATE_WINDOW = datetime.timedelta(seconds=1)


class ConversationState(str, Enum):
    IDLE = "idle"
    AWAITING_REPLY = "awaiting_reply"
    STREAMING_REPLY = "streaming_reply"


def make_title(text: str) -> str:
    if not text.strip():
        return "New Conversation"
    return text[:TITLE_LENGTH] + "..."


def visible_messages(messages: Sequence[Message]) -> List[Message]:
    """
    Display-time filter: drop any message whose role and content match an
    earlier one created within DUPLICATE_WINDOW. The store is not touched.
    """
    kept = []
    for i, msg in enumerate(messages):
        duplicate = any(
            earlier.role == msg.role
            and earlier.content == msg.content
            and abs(msg.created_at - earlier.created_at) <= DUPLICATE_WINDOW
            for earlier in messages[:i]
        )
        if not duplicate:
            kept.append(msg)
    return kept


class ConversationOrchestrator:
    def __init__(
        self,
        store: MessageStore,
        client: CompletionClient,
        *,
        attachments: Optional[AttachmentLoader] = None,
        user_id: str = "guest",
        stream: Optional[bool] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        self.store = store
        self.client = client
        self.attachments = attachments or AttachmentLoader()
        self.user_id = user_id
        self.stream = settings.get_stream_replies() if stream is None else stream
        self.options = {
            k: v for k, v in
            {"model": model, "temperature": temperature, "max_tokens": max_tokens}.items()
            if v is not None
        }
        self._states: Dict[str, ConversationState] = {}
        self._buffer: List[Message] = []
        store.subscribe(self._sync_buffer)

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------
    def _sync_buffer(self):
        current = self.store.current
        self._buffer = list(current.messages) if current else []

    @property
    def messages(self) -> List[Message]:
        """The selected conversation as it should be rendered."""
        return visible_messages(self._buffer)

    def state(self, conversation_id: Optional[str]) -> ConversationState:
        # Only conversations with a request in flight have an entry
        return self._states.get(conversation_id, ConversationState.IDLE)

    def is_idle(self, conversation_id: Optional[str]) -> bool:
        return self.state(conversation_id) is ConversationState.IDLE

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------
    def new_chat(self):
        """Deselect the current conversation; it stays in the store."""
        self.store.set_current(None)

    def select_conversation(self, conversation_id: str):
        if self.store.current_id == conversation_id:
            return
        self.store.set_current(conversation_id)

    def clear_all(self):
        self.store.clear_all()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    async def send(self, text: str, files: Sequence[Attachment] = ()) -> Optional[Message]:
        """
        Commit a user message and fetch the reply. Returns the assistant message
        (the error reply on failure), or None when the send was refused.
        """
        if not text.strip() and not files:
            logger.info("Ignoring empty send")
            return None

        conversation_id = self.store.current_id
        if conversation_id is not None and not self.is_idle(conversation_id):
            logger.info("Send refused: conversation %s already has a request in flight", conversation_id)
            return None

        if self.store.get_conversation(conversation_id) is None:
            conversation = Conversation(
                user_id=self.user_id,
                title=make_title(text if text.strip() else file_references(files)),
            )
            self.store.add_conversation(conversation)
            conversation_id = conversation.id

        self._states[conversation_id] = ConversationState.AWAITING_REPLY
        try:
            self.store.clear_error()
            content = await self._user_content(text, files)
            self.store.add_message(Message(conversation_id=conversation_id, role="user", content=content))
            conversation = self.store.get_conversation(conversation_id)
            history = list(conversation.messages) if conversation else []
            return await self._reply(conversation_id, history)
        finally:
            self._states.pop(conversation_id, None)

    async def _user_content(self, text: str, files: Sequence[Attachment]) -> Union[TextContent, PartsContent]:
        try:
            return await self.attachments.build_content(text, files)
        except Exception:
            logger.exception("Attachment assembly failed, sending text with file names only")
        if not files:
            return TextContent(text=text)
        refs = file_references(files)
        return TextContent(text=f"{text}\n\n{refs}" if text.strip() else refs)

    async def regenerate(self, message_id: str) -> Optional[Message]:
        """
        Replace an assistant reply: drop it, resend the history up to the last
        user message before it, and append the new reply like any other.
        """
        found = self.store.find_message(message_id)
        if found is None:
            logger.info("Regenerate ignored: no message %s", message_id)
            return None
        conversation, index = found
        if not self.is_idle(conversation.id):
            logger.info("Regenerate refused: conversation %s already has a request in flight", conversation.id)
            return None
        if conversation.messages[index].role != "assistant":
            logger.info("Regenerate ignored: message %s is not an assistant reply", message_id)
            return None

        prefix = conversation.messages[:index]
        user_positions = [i for i, m in enumerate(prefix) if m.role == "user"]
        if not user_positions:
            logger.info("Regenerate ignored: no user message before %s", message_id)
            return None
        history = prefix[: user_positions[-1] + 1]

        conversation_id = conversation.id
        self._states[conversation_id] = ConversationState.AWAITING_REPLY
        try:
            self.store.clear_error()
            self.store.remove_message(message_id)
            return await self._reply(conversation_id, history)
        finally:
            self._states.pop(conversation_id, None)

    async def _reply(self, conversation_id: str, history: List[Message]) -> Message:
        if self.stream:
            return await self._stream_reply(conversation_id, history)
        try:
            reply = await self.client.complete(history, **self.options)
        except Exception as e:
            return self._fail(conversation_id, e)
        return self._commit(conversation_id, reply)

    async def _stream_reply(self, conversation_id: str, history: List[Message]) -> Message:
        reply: Optional[Message] = None
        text = ""
        try:
            async for fragment in self.client.stream(history, **self.options):
                text += fragment
                if reply is None:
                    reply = self._commit(conversation_id, text)
                    self._states[conversation_id] = ConversationState.STREAMING_REPLY
                else:
                    self.store.update_message(reply.id, TextContent(text=text))
            if reply is None:
                raise UpstreamError("No response from model")
        except Exception as e:
            if reply is None:
                return self._fail(conversation_id, e)
            # Partial text stays as it is; the error is surfaced through the store
            self._log_failure(conversation_id, e)
            self.store.set_error(ERROR_REPLY)
        return reply

    def _commit(self, conversation_id: str, text: str) -> Message:
        message = Message(conversation_id=conversation_id, role="assistant", content=TextContent(text=text))
        self.store.add_message(message)
        return message

    def _fail(self, conversation_id: str, error: Exception) -> Message:
        self._log_failure(conversation_id, error)
        reply = CONFIG_ERROR_REPLY if isinstance(error, ConfigError) else ERROR_REPLY
        self.store.set_error(reply)
        return self._commit(conversation_id, reply)

    @staticmethod
    def _log_failure(conversation_id: str, error: Exception):
        if isinstance(error, ConfigError):
            logger.error("Conversation %s: %s", conversation_id, error.message)
        elif isinstance(error, ChatError):
            logger.warning("Conversation %s: completion failed: %s", conversation_id, error.message)
        else:
            logger.exception("Conversation %s: unexpected completion failure", conversation_id, exc_info=error)
