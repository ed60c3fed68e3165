from __future__ import annotations

from typing import Any, Dict, List, Optional
import logging
import uuid

from pymongo import DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import PyMongoError

from ..domain.chat_models import Conversation, ConversationMessage
from ..domain.errors import PersistenceError
from .conversation_store import now_iso


logger = logging.getLogger(__name__)


class MongoConversationStore:
    def __init__(self, mongo_url: str, mongo_db: str) -> None:
        self._client: Optional[MongoClient] = None
        self._conversations = None
        try:
            self._client = MongoClient(mongo_url, serverSelectionTimeoutMS=500)
            self._client.server_info()
            self._conversations = self._client[mongo_db]["conversations"]
            self._conversations.create_index("conversation_id", unique=True)
            self._conversations.create_index([("tenant_id", 1), ("user_id", 1), ("updated_at", DESCENDING)])
        except PyMongoError:
            logger.exception("MongoDB connection failed for conversations")
            self._client = None
            self._conversations = None

    @property
    def connected(self) -> bool:
        return self._conversations is not None

    def _to_conversation(self, doc: Dict[str, Any]) -> Conversation:
        doc = dict(doc)
        doc.pop("_id", None)
        return Conversation(**doc)

    def create(
        self,
        tenant_id: str,
        user_id: str,
        title: Optional[str] = None,
        assistant_type: Optional[str] = None,
    ) -> Conversation:
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
        try:
            self._conversations.insert_one(conv.model_dump())  # type: ignore[union-attr]
        except PyMongoError as exc:
            raise PersistenceError(f"Failed to create conversation: {exc}") from exc
        return conv

    def list(
        self, tenant_id: str, user_id: str, limit: int = 20, assistant_type: Optional[str] = None
    ) -> List[Conversation]:
        query: Dict[str, Any] = {"tenant_id": tenant_id, "user_id": user_id, "is_active": True}
        if assistant_type is not None:
            query["assistant_type"] = assistant_type
        try:
            cursor = (
                self._conversations.find(query)  # type: ignore[union-attr]
                .sort("updated_at", DESCENDING)
                .limit(limit)
            )
            return [self._to_conversation(doc) for doc in cursor]
        except PyMongoError as exc:
            raise PersistenceError(f"Failed to list conversations: {exc}") from exc

    def get(self, conversation_id: str) -> Optional[Conversation]:
        try:
            doc = self._conversations.find_one({"conversation_id": conversation_id})  # type: ignore[union-attr]
        except PyMongoError as exc:
            raise PersistenceError(f"Failed to load conversation: {exc}") from exc
        return self._to_conversation(doc) if doc else None

    def deactivate(self, conversation_id: str) -> bool:
        try:
            res = self._conversations.update_one(  # type: ignore[union-attr]
                {"conversation_id": conversation_id},
                {"$set": {"is_active": False, "updated_at": now_iso()}},
            )
        except PyMongoError as exc:
            raise PersistenceError(f"Failed to delete conversation: {exc}") from exc
        return bool(res.matched_count)

    def append_message(self, conversation_id: str, message: ConversationMessage) -> Conversation:
        try:
            doc = self._conversations.find_one_and_update(  # type: ignore[union-attr]
                {"conversation_id": conversation_id},
                {
                    "$push": {"messages": message.model_dump()},
                    "$set": {"updated_at": message.created_at or now_iso()},
                },
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            raise PersistenceError(f"Failed to save message: {exc}") from exc
        if not doc:
            raise KeyError("Conversation not found")
        return self._to_conversation(doc)
