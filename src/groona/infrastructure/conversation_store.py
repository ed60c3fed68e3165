from __future__ import annotations

from datetime import UTC, datetime
from threading import RLock
from typing import Any, Dict, List, Optional, Protocol
import logging
import uuid

from ..config import AssistantSettings, get_settings
from ..domain.chat_models import Conversation, ConversationMessage


logger = logging.getLogger(__name__)


class ConversationStore(Protocol):
    def create(self, tenant_id: str, user_id: str, title: Optional[str] = None, assistant_type: Optional[str] = None) -> Conversation: ...

    def list(
        self, tenant_id: str, user_id: str, limit: int = 20, assistant_type: Optional[str] = None
    ) -> List[Conversation]: ...

    def get(self, conversation_id: str) -> Optional[Conversation]: ...

    def deactivate(self, conversation_id: str) -> bool: ...

    def append_message(self, conversation_id: str, message: ConversationMessage) -> Conversation: ...


def now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class InMemoryConversationStore:
    def __init__(self) -> None:
        self._conversations: Dict[str, Conversation] = {}
        self._lock = RLock()

    def create(
        self,
        tenant_id: str,
        user_id: str,
        title: Optional[str] = None,
        assistant_type: Optional[str] = None,
    ) -> Conversation:
        with self._lock:
            now = now_iso()
            conv = Conversation(
                conversation_id=uuid.uuid4().hex,
                tenant_id=tenant_id,
                user_id=user_id,
                title=title or "New Conversation",
                assistant_type=assistant_type or "groona",
                created_at=now,
                updated_at=now,
            )
            self._conversations[conv.conversation_id] = conv
            return conv.model_copy(deep=True)

    def list(
        self, tenant_id: str, user_id: str, limit: int = 20, assistant_type: Optional[str] = None
    ) -> List[Conversation]:
        with self._lock:
            out = [
                c.model_copy(deep=True)
                for c in self._conversations.values()
                if c.tenant_id == tenant_id
                and c.user_id == user_id
                and c.is_active
                and (assistant_type is None or c.assistant_type == assistant_type)
            ]
            # Newest first
            out.sort(key=lambda c: c.updated_at, reverse=True)
            return out[: max(0, limit)]

    def get(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            conv = self._conversations.get(conversation_id)
            return conv.model_copy(deep=True) if conv else None

    def deactivate(self, conversation_id: str) -> bool:
        with self._lock:
            conv = self._conversations.get(conversation_id)
            if not conv:
                return False
            conv.is_active = False
            conv.updated_at = now_iso()
            return True

    def append_message(self, conversation_id: str, message: ConversationMessage) -> Conversation:
        with self._lock:
            conv = self._conversations.get(conversation_id)
            if not conv:
                raise KeyError("Conversation not found")
            conv.messages.append(message.model_copy(deep=True))
            conv.updated_at = message.created_at or now_iso()
            return conv.model_copy(deep=True)


_store: Optional[Any] = None


def get_conversation_store(settings: Optional[AssistantSettings] = None):
    global _store
    if _store is not None:
        return _store
    settings = settings or get_settings()
    if settings.store_impl == "mongo":
        from .conversation_store_mongo import MongoConversationStore

        mongo = MongoConversationStore(settings.mongo_url, settings.mongo_db)
        if mongo.connected:
            _store = mongo
            return _store
        logger.warning("MongoDB unavailable at %s; using in-memory conversation store", settings.mongo_url)
    _store = InMemoryConversationStore()
    return _store
