"""Turn validated drafts into persisted Projects and Tasks.

The primary record is the only thing a caller can observe failing. Role
assignment, activity records, events and emails are queued as independent
effects after the write and each one is isolated; the assignee email is
additionally handed to an :class:`EffectScheduler` so it runs after the
HTTP response has been sent.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple
import logging

from ..config import AssistantSettings, get_settings
from ..domain.drafts import AssigneeByEmail, AssigneeByName, ProjectDraft, TaskDraft
from ..domain.errors import ResolutionError, ValidationError
from ..domain.models import Project, Task, TenantUser
from ..infrastructure.events import publish_event
from ..infrastructure.notifier import Notifier
from ..infrastructure.tenant_store import EntityStore, TenantStore
from ..observability.metrics import ENTITIES_CREATED, SIDE_EFFECT_FAILURES
from .date_normalizer import is_iso_date, parse_date
from .entity_resolver import find_by_name, find_user_by_email, require_by_name


logger = logging.getLogger(__name__)

Effect = Tuple[str, Callable[[], Any]]

ASSIGNEE_NAME_ERROR = (
    'The name "{name}" is not a team member, or you entered the wrong name. '
    "Please provide the correct team member name."
)
ASSIGNEE_EMAIL_ERROR = (
    "The email provided does not belong to a team member. "
    "Please provide a valid team member name instead."
)


def run_best_effort(effects: Iterable[Effect]) -> List[str]:
    """Run each effect in turn; a failure is logged and never propagates.

    Returns the names of the effects that failed.
    """

    failed: List[str] = []
    for name, effect in effects:
        try:
            effect()
        except Exception:
            logger.exception("Side effect %s failed", name)
            SIDE_EFFECT_FAILURES.labels(effect=name).inc()
            failed.append(name)
    return failed


class EffectScheduler(Protocol):
    def schedule(self, func: Callable[..., Any], *args: Any) -> None: ...


class QueuedEffectScheduler:
    """Holds deferred work until :meth:`drain` is called."""

    def __init__(self) -> None:
        self.pending: List[Tuple[Callable[..., Any], Tuple[Any, ...]]] = []

    def schedule(self, func: Callable[..., Any], *args: Any) -> None:
        self.pending.append((func, args))

    def drain(self) -> None:
        pending, self.pending = self.pending, []
        for func, args in pending:
            func(*args)


class InlineEffectScheduler:
    """Runs work immediately; for callers outside a request cycle."""

    def schedule(self, func: Callable[..., Any], *args: Any) -> None:
        func(*args)


class BackgroundTaskScheduler:
    """Runs deferred work after the response through FastAPI ``BackgroundTasks``."""

    def __init__(self, background_tasks: Any) -> None:
        self._tasks = background_tasks

    def schedule(self, func: Callable[..., Any], *args: Any) -> None:
        self._tasks.add_task(func, *args)


def _normalize_date(raw: Optional[str], field: str) -> Optional[str]:
    if not raw:
        return None
    if is_iso_date(raw):
        return raw.strip()
    parsed = parse_date(raw)
    if not parsed:
        logger.warning("Invalid %s format, skipping: %s", field, raw)
    return parsed


def _coerce_hours(raw: Any) -> float:
    if raw is None or raw == "" or raw == "undefined":
        return 0.0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    return value if value >= 0 else 0.0


def _display_name(users: List[TenantUser], email: str) -> str:
    user = find_user_by_email(users, email)
    return user.full_name if user and user.full_name else email


class ProjectCreator:
    def __init__(
        self,
        tenants: TenantStore,
        entities: EntityStore,
        notifier: Notifier,
        settings: Optional[AssistantSettings] = None,
        publish: Callable[[str, Dict[str, Any]], None] = publish_event,
    ) -> None:
        self._tenants = tenants
        self._entities = entities
        self._notifier = notifier
        self._settings = settings or get_settings()
        self._publish = publish

    def _resolve_workspace_id(self, draft: ProjectDraft, tenant_id: str) -> Optional[str]:
        if draft.workspace_id:
            return draft.workspace_id
        workspaces = self._tenants.find_workspaces(tenant_id)
        if draft.workspace_name and draft.workspace_name.strip():
            return require_by_name(workspaces, draft.workspace_name, "Workspace").id
        if not workspaces:
            return None
        default = next((w for w in workspaces if w.is_default), workspaces[0])
        return default.id

    def create(self, draft: ProjectDraft, tenant_id: str, user_id: str, user_email: str) -> Project:
        if not draft.name or not draft.name.strip():
            raise ValidationError("Project name is required")
        name = draft.name.strip()
        workspace_id = self._resolve_workspace_id(draft, tenant_id)
        deadline = _normalize_date(draft.deadline, "deadline")

        creator = user_email.lower()
        invited = [m.strip() for m in draft.team_members if m and m.strip() and m.strip().lower() != creator]
        team = [{"email": user_email, "role": "project_manager"}]
        team.extend({"email": email, "role": "member"} for email in invited)

        project = self._entities.create_project(
            {
                "tenant_id": tenant_id,
                "name": name,
                "description": draft.description or f"Project created via AI Assistant: {name}",
                "status": draft.status or "planning",
                "priority": draft.priority or "medium",
                "deadline": deadline,
                "workspace_id": workspace_id,
                "owner": user_email,
                "progress": 0,
                "team_members": team,
            }
        )
        ENTITIES_CREATED.labels(entity="project").inc()
        logger.info("Created project %s for tenant %s", project.id, tenant_id)

        effects: List[Effect] = [
            (
                "role_assignment",
                lambda: self._entities.create_role_assignment(
                    {"tenant_id": tenant_id, "user_id": user_id, "project_id": project.id, "role": "project_manager"}
                ),
            ),
            (
                "activity",
                lambda: self._entities.create_activity(
                    {
                        "tenant_id": tenant_id,
                        "action": "created",
                        "entity_type": "project",
                        "entity_id": project.id,
                        "entity_name": project.name,
                        "project_id": project.id,
                        "user_email": user_email,
                        "details": f'Created project "{project.name}" via AI Assistant',
                    }
                ),
            ),
        ]
        effects.extend(self._member_emails(project, invited, tenant_id, user_email))
        effects.append(
            (
                "event",
                lambda: self._publish(
                    "project.created", {"tenant_id": tenant_id, "project_id": project.id, "name": project.name}
                ),
            )
        )
        run_best_effort(effects)
        return project

    def _member_emails(self, project: Project, invited: List[str], tenant_id: str, user_email: str) -> List[Effect]:
        if not invited:
            return []
        frontend_url = self._settings.frontend_url
        if not frontend_url:
            logger.warning("FRONTEND_URL not set; skipping project member emails")
            return []

        def send(email: str) -> None:
            users = self._tenants.find_users(tenant_id)
            self._notifier.send_email(
                email,
                "project_member_added",
                {
                    "memberName": _display_name(users, email),
                    "memberEmail": email,
                    "projectName": project.name,
                    "projectDescription": project.description,
                    "addedBy": _display_name(users, user_email),
                    "projectUrl": f"{frontend_url}/ProjectDetail?id={project.id}",
                },
            )

        return [(f"member_email:{email}", lambda email=email: send(email)) for email in invited]


class TaskCreator:
    def __init__(
        self,
        tenants: TenantStore,
        entities: EntityStore,
        notifier: Notifier,
        settings: Optional[AssistantSettings] = None,
        publish: Callable[[str, Dict[str, Any]], None] = publish_event,
    ) -> None:
        self._tenants = tenants
        self._entities = entities
        self._notifier = notifier
        self._settings = settings or get_settings()
        self._publish = publish

    def _resolve_project(self, draft: TaskDraft, tenant_id: str) -> Project:
        if draft.project_id:
            project = self._tenants.get_project(tenant_id, draft.project_id)
            if project is None:
                raise ResolutionError(f'Project "{draft.project_id}" not found', value=draft.project_id)
            return project
        return require_by_name(self._tenants.find_projects(tenant_id), draft.project_name, "Project")

    def _resolve_assignee(self, draft: TaskDraft, tenant_id: str) -> Optional[TenantUser]:
        assignee = draft.assignee
        if assignee is None:
            return None
        users = self._tenants.find_users(tenant_id)
        if isinstance(assignee, AssigneeByName):
            user = find_by_name(users, assignee.name, key="full_name")
            if user is None:
                raise ResolutionError(ASSIGNEE_NAME_ERROR.format(name=assignee.name), value=assignee.name)
            return user
        if isinstance(assignee, AssigneeByEmail):
            user = find_user_by_email(users, assignee.email)
            if user is None:
                raise ResolutionError(ASSIGNEE_EMAIL_ERROR, value=assignee.email)
            return user
        return None

    def create(
        self,
        draft: TaskDraft,
        tenant_id: str,
        user_id: str,
        user_email: str,
        scheduler: Optional[EffectScheduler] = None,
    ) -> Task:
        if not draft.title or not draft.title.strip():
            raise ValidationError("Task title is required")
        if not (draft.project_id or (draft.project_name and draft.project_name.strip())):
            raise ValidationError("Project is required")

        title = draft.title.strip()
        project = self._resolve_project(draft, tenant_id)

        sprint_id = draft.sprint_id
        if not sprint_id and draft.sprint_name:
            sprint = find_by_name(self._tenants.find_sprints(tenant_id, project.id), draft.sprint_name)
            if sprint is not None:
                sprint_id = sprint.id
            else:
                logger.info("Sprint %r not found in project %s; creating task without sprint", draft.sprint_name, project.id)

        assignee = self._resolve_assignee(draft, tenant_id)
        assigned_to = [assignee.email] if assignee else []

        task = self._entities.create_task(
            {
                "tenant_id": tenant_id,
                "project_id": project.id,
                "workspace_id": project.workspace_id,
                "title": title,
                "description": draft.description or f"Task created via AI Assistant: {title}",
                "task_type": draft.task_type or "task",
                "status": draft.status or "todo",
                "priority": draft.priority or "medium",
                "assigned_to": assigned_to,
                "reporter": user_email,
                "sprint_id": sprint_id or None,
                "due_date": _normalize_date(draft.due_date, "due date"),
                "estimated_hours": _coerce_hours(draft.estimated_hours),
                "story_points": 0,
                "ai_generated": True,
                "ai_metadata": {
                    "created_via": "ai_assistant",
                    "created_at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
                },
            }
        )
        ENTITIES_CREATED.labels(entity="task").inc()
        logger.info("Created task %s in project %s", task.id, project.id)

        run_best_effort(
            [
                (
                    "activity",
                    lambda: self._entities.create_activity(
                        {
                            "tenant_id": tenant_id,
                            "action": "created",
                            "entity_type": "task",
                            "entity_id": task.id,
                            "entity_name": task.title,
                            "project_id": project.id,
                            "user_email": user_email,
                            "details": f'Created task "{task.title}" via AI Assistant',
                        }
                    ),
                ),
                (
                    "event",
                    lambda: self._publish(
                        "task.created", {"tenant_id": tenant_id, "task_id": task.id, "project_id": project.id}
                    ),
                ),
            ]
        )

        if assigned_to:
            deferred: List[Effect] = [
                (f"task_assigned_email:{email}", lambda email=email: self._send_assignment(task, project, email, user_email))
                for email in assigned_to
            ]
            (scheduler or InlineEffectScheduler()).schedule(run_best_effort, deferred)
        return task

    def _send_assignment(self, task: Task, project: Project, assignee_email: str, user_email: str) -> None:
        frontend_url = self._settings.frontend_url
        if not frontend_url:
            logger.warning("FRONTEND_URL not set; skipping task assignment email")
            return
        users = self._tenants.find_users(task.tenant_id)
        self._notifier.send_email(
            assignee_email,
            "task_assigned",
            {
                "assigneeName": _display_name(users, assignee_email),
                "assigneeEmail": assignee_email,
                "taskTitle": task.title,
                "taskDescription": task.description,
                "projectName": project.name,
                "assignedBy": _display_name(users, user_email),
                "dueDate": task.due_date,
                "priority": task.priority,
                "taskUrl": f"{frontend_url}/ProjectDetail?id={project.id}&taskId={task.id}",
            },
        )
