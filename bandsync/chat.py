"""
Chats and messages.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from google.cloud.firestore_v1 import SERVER_TIMESTAMP

from bandsync.errors import InvalidArgument, NotFound, Unauthorized
from bandsync.firebase_constants import CHATS_COLLECTION, MESSAGES_COLLECTION
from bandsync.models import (
    Chat,
    ChatType,
    Message,
    decode_chat,
    decode_message,
    encode,
)
from bandsync.store import DocumentStore
from bandsync.subscriptions import Subscription, subscribe_query

logger = logging.getLogger(__name__)


class ChatService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        return decode_chat(self.store.get(CHATS_COLLECTION, chat_id))

    def require_chat(self, chat_id: str) -> Chat:
        chat = self.get_chat(chat_id)
        if chat is None:
            raise NotFound(f"Chat {chat_id} not found")
        return chat

    def create_chat(
        self,
        name: str,
        type: ChatType = ChatType.GROUP,
        participants: Sequence[str] = (),
    ) -> str:
        try:
            type = ChatType(type)
        except ValueError as exc:
            raise InvalidArgument(f"Unknown chat type: {type}") from exc
        name = (name or "").strip()
        unique = list(dict.fromkeys(p for p in participants if p))
        if not unique:
            raise InvalidArgument("A chat needs at least one participant")
        if type == ChatType.GROUP and not name:
            raise InvalidArgument("Group chats need a name")
        if type == ChatType.PRIVATE and len(unique) > 2:
            raise InvalidArgument("Private chats have at most two participants")
        chat = Chat(id=None, name=name, type=type, participants=unique)
        body = encode(chat)
        # New chats sort by creation time until the first message arrives.
        body["lastMessageTime"] = SERVER_TIMESTAMP
        chat_id = self.store.add(CHATS_COLLECTION, body)
        logger.info("Chat %s created with %d participants", chat_id, len(unique))
        return chat_id

    def chats_for_user(self, uid: str) -> List[Chat]:
        docs = self.store.query(
            CHATS_COLLECTION,
            [("participants", "array_contains", uid)],
            order_by="lastMessageTime",
            descending=True,
        )
        return [chat for chat in map(decode_chat, docs) if chat is not None]

    def messages(self, chat_id: str) -> List[Message]:
        docs = self.store.query(
            MESSAGES_COLLECTION, [("chatId", "==", chat_id)], order_by="timestamp"
        )
        return [message for message in map(decode_message, docs) if message is not None]

    def send_message(
        self,
        chat_id: str,
        sender_id: str,
        text: str,
        reply_to: Optional[str] = None,
    ) -> str:
        """Store the message and the chat preview in one batch."""
        text = (text or "").strip()
        if not text:
            raise InvalidArgument("Message text must not be empty")
        chat = self.require_chat(chat_id)
        if sender_id not in chat.participants:
            raise Unauthorized("Only participants can post in this chat")

        message_id = self.store.new_id(MESSAGES_COLLECTION)
        body = encode(
            Message(
                id=message_id,
                chat_id=chat_id,
                sender_id=sender_id,
                text=text,
                reply_to=reply_to,
            )
        )
        body["timestamp"] = SERVER_TIMESTAMP
        batch = self.store.batch()
        batch.set(MESSAGES_COLLECTION, message_id, body)
        batch.update(
            CHATS_COLLECTION,
            chat_id,
            {"lastMessage": text, "lastMessageTime": SERVER_TIMESTAMP},
        )
        batch.commit()
        return message_id

    def _require_own_message(self, message_id: str, actor_id: Optional[str]) -> Message:
        message = decode_message(self.store.get(MESSAGES_COLLECTION, message_id))
        if message is None:
            raise NotFound(f"Message {message_id} not found")
        if actor_id is not None and message.sender_id != actor_id:
            raise Unauthorized("Only the sender can change this message")
        return message

    def edit_message(
        self, message_id: str, text: str, *, actor_id: Optional[str] = None
    ) -> None:
        text = (text or "").strip()
        if not text:
            raise InvalidArgument("Message text must not be empty")
        self._require_own_message(message_id, actor_id)
        self.store.update(MESSAGES_COLLECTION, message_id, {"text": text})

    def delete_message(self, message_id: str, *, actor_id: Optional[str] = None) -> None:
        self._require_own_message(message_id, actor_id)
        self.store.delete(MESSAGES_COLLECTION, message_id)
        logger.info("Message %s deleted", message_id)

    def watch_chats(
        self, uid: str, callback: Callable[[List[Chat]], None], **kwargs
    ) -> Subscription[List[Chat]]:
        return subscribe_query(
            self.store,
            CHATS_COLLECTION,
            [("participants", "array_contains", uid)],
            decode_chat,
            callback,
            order_by="lastMessageTime",
            descending=True,
            **kwargs,
        )

    def watch_messages(
        self, chat_id: str, callback: Callable[[List[Message]], None], **kwargs
    ) -> Subscription[List[Message]]:
        return subscribe_query(
            self.store,
            MESSAGES_COLLECTION,
            [("chatId", "==", chat_id)],
            decode_message,
            callback,
            order_by="timestamp",
            **kwargs,
        )
