from __future__ import annotations

from datetime import UTC, datetime
from threading import RLock
from typing import Any, Dict, List, Optional, Protocol
import logging
import uuid

from ..config import AssistantSettings, get_settings
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


class TenantStore(Protocol):
    def find_workspaces(self, tenant_id: str) -> List[Workspace]: ...

    def find_projects(self, tenant_id: str) -> List[Project]: ...

    def get_project(self, tenant_id: str, project_id: str) -> Optional[Project]: ...

    def find_sprints(self, tenant_id: str, project_id: str) -> List[Sprint]: ...

    def find_users(self, tenant_id: str) -> List[TenantUser]: ...

    def find_tasks(self, tenant_id: str) -> List[Task]: ...


class EntityStore(Protocol):
    def create_project(self, data: Dict[str, Any]) -> Project: ...

    def create_task(self, data: Dict[str, Any]) -> Task: ...

    def create_role_assignment(self, data: Dict[str, Any]) -> RoleAssignment: ...

    def create_activity(self, data: Dict[str, Any]) -> Activity: ...

    def record_token_usage(self, data: Dict[str, Any]) -> TokenUsage: ...

    def token_usage_total(self, tenant_id: str, user_id: Optional[str] = None) -> int: ...


def _now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class InMemoryTenantStore:
    """Single-process store backing both the read and the write interface."""

    def __init__(self) -> None:
        self._workspaces: List[Workspace] = []
        self._projects: List[Project] = []
        self._sprints: List[Sprint] = []
        self._users: List[TenantUser] = []
        self._tasks: List[Task] = []
        self._roles: List[RoleAssignment] = []
        self._activities: List[Activity] = []
        self._usage: List[TokenUsage] = []
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Seeding (tenant administration lives outside the assistant)
    # ------------------------------------------------------------------
    def add_workspace(self, tenant_id: str, name: str, is_default: bool = False) -> Workspace:
        with self._lock:
            ws = Workspace(id=uuid.uuid4().hex, tenant_id=tenant_id, name=name, is_default=is_default)
            self._workspaces.append(ws)
            return ws

    def add_user(self, tenant_id: str, full_name: str, email: str) -> TenantUser:
        with self._lock:
            user = TenantUser(id=uuid.uuid4().hex, tenant_id=tenant_id, full_name=full_name, email=email)
            self._users.append(user)
            return user

    def add_sprint(self, tenant_id: str, project_id: str, name: str) -> Sprint:
        with self._lock:
            sprint = Sprint(id=uuid.uuid4().hex, tenant_id=tenant_id, project_id=project_id, name=name)
            self._sprints.append(sprint)
            return sprint

    # ------------------------------------------------------------------
    # TenantStore
    # ------------------------------------------------------------------
    def find_workspaces(self, tenant_id: str) -> List[Workspace]:
        with self._lock:
            return [w for w in self._workspaces if w.tenant_id == tenant_id]

    def find_projects(self, tenant_id: str) -> List[Project]:
        with self._lock:
            return [p for p in self._projects if p.tenant_id == tenant_id]

    def get_project(self, tenant_id: str, project_id: str) -> Optional[Project]:
        with self._lock:
            for project in self._projects:
                if project.tenant_id == tenant_id and project.id == project_id:
                    return project
            return None

    def find_sprints(self, tenant_id: str, project_id: str) -> List[Sprint]:
        with self._lock:
            return [s for s in self._sprints if s.tenant_id == tenant_id and s.project_id == project_id]

    def find_users(self, tenant_id: str) -> List[TenantUser]:
        with self._lock:
            return [u for u in self._users if u.tenant_id == tenant_id]

    def find_tasks(self, tenant_id: str) -> List[Task]:
        with self._lock:
            return [t for t in self._tasks if t.tenant_id == tenant_id]

    # ------------------------------------------------------------------
    # EntityStore
    # ------------------------------------------------------------------
    def create_project(self, data: Dict[str, Any]) -> Project:
        with self._lock:
            project = Project(id=uuid.uuid4().hex, created_at=_now_iso(), **data)
            self._projects.append(project)
            return project

    def create_task(self, data: Dict[str, Any]) -> Task:
        with self._lock:
            task = Task(id=uuid.uuid4().hex, created_at=_now_iso(), **data)
            self._tasks.append(task)
            return task

    def create_role_assignment(self, data: Dict[str, Any]) -> RoleAssignment:
        with self._lock:
            role = RoleAssignment(id=uuid.uuid4().hex, **data)
            self._roles.append(role)
            return role

    def create_activity(self, data: Dict[str, Any]) -> Activity:
        with self._lock:
            activity = Activity(id=uuid.uuid4().hex, created_at=_now_iso(), **data)
            self._activities.append(activity)
            return activity

    def record_token_usage(self, data: Dict[str, Any]) -> TokenUsage:
        with self._lock:
            usage = TokenUsage(created_at=_now_iso(), **data)
            self._usage.append(usage)
            return usage

    def token_usage_total(self, tenant_id: str, user_id: Optional[str] = None) -> int:
        with self._lock:
            return sum(
                u.total_tokens
                for u in self._usage
                if u.tenant_id == tenant_id and (user_id is None or u.user_id == user_id)
            )

    def list_activities(self, tenant_id: str) -> List[Activity]:
        with self._lock:
            return [a for a in self._activities if a.tenant_id == tenant_id]

    def list_role_assignments(self, tenant_id: str) -> List[RoleAssignment]:
        with self._lock:
            return [r for r in self._roles if r.tenant_id == tenant_id]


_store: Optional[Any] = None


def get_tenant_store(settings: Optional[AssistantSettings] = None):
    """Process-wide store; ``GROONA_STORE_IMPL=mongo`` selects MongoDB."""

    global _store
    if _store is not None:
        return _store
    settings = settings or get_settings()
    if settings.store_impl == "mongo":
        from .tenant_store_mongo import MongoTenantStore

        mongo = MongoTenantStore(settings.mongo_url, settings.mongo_db)
        if mongo.connected:
            _store = mongo
            return _store
        logger.warning("MongoDB unavailable at %s; using in-memory tenant store", settings.mongo_url)
    _store = InMemoryTenantStore()
    return _store
