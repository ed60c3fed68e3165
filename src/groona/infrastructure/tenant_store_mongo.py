from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Dict, List, Optional, Type, TypeVar
import logging
import uuid

from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

from ..domain.errors import PersistenceError
from ..domain.models import (
    Activity,
    Project,
    RoleAssignment,
    Sprint,
    Task,
    TenantUser,
    TokenUsage,
    Workspace,
)


logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class MongoTenantStore:
    """MongoDB-backed TenantStore/EntityStore.

    Collections are keyed by ``id`` and scoped by ``tenant_id``. Write
    failures surface as :class:`PersistenceError`; nothing is retried here.
    """

    def __init__(self, mongo_url: str, mongo_db: str) -> None:
        self._client: Optional[MongoClient] = None
        self._db = None
        self._connect(mongo_url, mongo_db)

    @property
    def connected(self) -> bool:
        return self._db is not None

    def _connect(self, mongo_url: str, mongo_db: str) -> None:
        try:
            self._client = MongoClient(mongo_url, serverSelectionTimeoutMS=500)
            self._client.server_info()
            self._db = self._client[mongo_db]
            for name in ("workspaces", "projects", "sprints", "users", "tasks"):
                self._db[name].create_index([("tenant_id", ASCENDING)])
                self._db[name].create_index("id", unique=True)
            self._db["token_usage"].create_index([("tenant_id", ASCENDING), ("user_id", ASCENDING)])
        except PyMongoError:
            logger.exception("MongoDB connection failed for %s", mongo_db)
            self._client = None
            self._db = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _find(self, collection: str, query: Dict[str, Any], model: Type[M], sort: Optional[str] = None) -> List[M]:
        try:
            cursor = self._db[collection].find(query, {"_id": 0})  # type: ignore[index]
            if sort:
                cursor = cursor.sort(sort, ASCENDING)
            return [model(**doc) for doc in cursor]
        except PyMongoError as exc:
            raise PersistenceError(f"Failed to read {collection}: {exc}") from exc

    def _insert(self, collection: str, model: Type[M], data: Dict[str, Any], with_id: bool = True, stamp: bool = True) -> M:
        doc = dict(data)
        if with_id:
            doc["id"] = uuid.uuid4().hex
        if stamp:
            doc["created_at"] = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        record = model(**doc)
        try:
            self._db[collection].insert_one(record.model_dump())  # type: ignore[index]
        except PyMongoError as exc:
            raise PersistenceError(f"Failed to write {collection}: {exc}") from exc
        return record

    # ------------------------------------------------------------------
    # TenantStore
    # ------------------------------------------------------------------
    def find_workspaces(self, tenant_id: str) -> List[Workspace]:
        return self._find("workspaces", {"tenant_id": tenant_id}, Workspace)

    def find_projects(self, tenant_id: str) -> List[Project]:
        return self._find("projects", {"tenant_id": tenant_id}, Project, sort="created_at")

    def get_project(self, tenant_id: str, project_id: str) -> Optional[Project]:
        found = self._find("projects", {"tenant_id": tenant_id, "id": project_id}, Project)
        return found[0] if found else None

    def find_sprints(self, tenant_id: str, project_id: str) -> List[Sprint]:
        return self._find("sprints", {"tenant_id": tenant_id, "project_id": project_id}, Sprint)

    def find_users(self, tenant_id: str) -> List[TenantUser]:
        return self._find("users", {"tenant_id": tenant_id}, TenantUser)

    def find_tasks(self, tenant_id: str) -> List[Task]:
        return self._find("tasks", {"tenant_id": tenant_id}, Task)

    # ------------------------------------------------------------------
    # EntityStore
    # ------------------------------------------------------------------
    def create_project(self, data: Dict[str, Any]) -> Project:
        return self._insert("projects", Project, data)

    def create_task(self, data: Dict[str, Any]) -> Task:
        return self._insert("tasks", Task, data)

    def create_role_assignment(self, data: Dict[str, Any]) -> RoleAssignment:
        return self._insert("project_user_roles", RoleAssignment, data, stamp=False)

    def create_activity(self, data: Dict[str, Any]) -> Activity:
        return self._insert("activities", Activity, data)

    def record_token_usage(self, data: Dict[str, Any]) -> TokenUsage:
        return self._insert("token_usage", TokenUsage, data, with_id=False)

    def token_usage_total(self, tenant_id: str, user_id: Optional[str] = None) -> int:
        match: Dict[str, Any] = {"tenant_id": tenant_id}
        if user_id:
            match["user_id"] = user_id
        try:
            rows = list(
                self._db["token_usage"].aggregate(  # type: ignore[index]
                    [{"$match": match}, {"$group": {"_id": None, "total": {"$sum": "$total_tokens"}}}]
                )
            )
        except PyMongoError as exc:
            raise PersistenceError(f"Failed to read token_usage: {exc}") from exc
        return int(rows[0]["total"]) if rows else 0
