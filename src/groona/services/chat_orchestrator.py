"""One assistant chat turn, from user message to persisted reply.

Structured fields are never asked of the model: the extractors read them from
the conversation, and when a creation request is already complete the turn
short-circuits with a ``create_*`` action instead of a model reply. Everything
that reaches the user is scrubbed of email addresses.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional, Sequence
import json
import logging
import math
import re

from ..config import AssistantSettings, get_settings
from ..domain.chat_models import ChatRequest, Conversation, ConversationMessage
from ..domain.drafts import ProjectDraft, TaskDraft
from ..domain.errors import ModelNotAllowedError, NotFoundError, ProviderNotConfiguredError, UpstreamModelError
from ..domain.models import Project, Sprint, TenantUser, Workspace
from ..infrastructure.conversation_store import ConversationStore, now_iso
from ..infrastructure.tenant_store import EntityStore, TenantStore
from .ai_provider import AIChatProvider, Completion, complete_with_fallback
from .completeness import check_project_draft, check_task_draft
from .entity_resolver import find_by_name
from .extraction import (
    extract_project_draft,
    extract_task_draft,
    is_project_creation_conversation,
    is_task_creation_conversation,
)
from .model_router import ModelResolver
from .model_whitelist import ModelWhitelist


logger = logging.getLogger(__name__)
LOG = logging.getLogger("groona.llm")

HISTORY_WINDOW = 10
TASK_CONTEXT_LIMIT = 20
DESCRIPTION_SYSTEM = "You are a professional project manager. Generate concise {kind} descriptions."

_EMAIL = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)+")
_ACTION = re.compile(r"\{[\s\S]*\"action\"[\s\S]*\}")
_TASK_TOPICS = re.compile(r"task|project|assign|team|manager|status|due|ticket", re.I)
_RETRY_AFTER = re.compile(r"retry in (\d+(?:\.\d+)?)s", re.I)
_PLACEHOLDER_WORKSPACES = ("workspace", "name")


def scrub_emails(text: str, users: Sequence[TenantUser] = ()) -> str:
    """Replace addresses of known members with their names; hide the rest."""

    if not text:
        return text
    by_email = {u.email.lower(): u.full_name for u in users if u.email and u.full_name}

    def _sub(match: re.Match) -> str:
        return by_email.get(match.group(0).lower(), "[email hidden]")

    return _EMAIL.sub(_sub, text)


def _scrub_value(value: Any, users: Sequence[TenantUser]) -> Any:
    if isinstance(value, str):
        return scrub_emails(value, users)
    if isinstance(value, dict):
        return {k: _scrub_value(v, users) for k, v in value.items()}
    if isinstance(value, list):
        return [_scrub_value(v, users) for v in value]
    return value


def public_conversation(conversation: Conversation, users: Sequence[TenantUser] = ()) -> Dict[str, Any]:
    """Conversation as returned to the client; stored content keeps the raw text."""

    data = conversation.model_dump()
    for message in data["messages"]:
        message["content"] = scrub_emails(message["content"], users)
        if message.get("action"):
            message["action"] = _scrub_value(message["action"], users)
    return data


def parse_action(reply: str) -> Optional[Dict[str, Any]]:
    match = _ACTION.search(reply or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except ValueError:
        return None
    if isinstance(data, dict) and data.get("action"):
        return data
    return None


def display_message(reply: str, action: Optional[Dict[str, Any]]) -> str:
    if action and action.get("action") == "create_project":
        return f"Your project **{action.get('project_name')}** has been created successfully!"
    if action and action.get("action") == "create_task":
        return f"Your task **{action.get('title')}** has been created successfully!"
    return reply


def build_context(tenants: TenantStore, tenant_id: str, content: str) -> str:
    """Tenant facts handed to the model; member names only, never addresses."""

    lines: List[str] = []
    workspaces = tenants.find_workspaces(tenant_id)
    if workspaces:
        lines.append("Workspaces: " + ", ".join(w.name for w in workspaces))
    users = tenants.find_users(tenant_id)
    if users:
        lines.append("Team members: " + ", ".join(u.full_name for u in users if u.full_name))
    if _TASK_TOPICS.search(content or ""):
        names = {u.email.lower(): u.full_name for u in users}
        tasks = sorted(tenants.find_tasks(tenant_id), key=lambda t: (t.due_date is None, t.due_date or ""))
        if tasks:
            lines.append("Tasks:")
        for task in tasks[:TASK_CONTEXT_LIMIT]:
            assignees = ", ".join(names[e.lower()] for e in task.assigned_to if e.lower() in names)
            line = f"- {task.title} [{task.status}, {task.priority} priority]"
            if task.due_date:
                line += f" due {task.due_date}"
            if assignees:
                line += f" assigned to {assignees}"
            lines.append(line)
    return "\n".join(lines)


def _bullets(values: Sequence[str], empty: str) -> str:
    return "\n".join(f'- "{v}"' for v in values) if values else empty


def build_system_prompt(
    workspaces: Sequence[Workspace],
    projects: Sequence[Project],
    sprints: Sequence[Sprint],
    project_draft: Optional[ProjectDraft] = None,
    task_draft: Optional[TaskDraft] = None,
) -> str:
    workspace_list = _bullets([w.name for w in workspaces], "No workspaces found. The user needs to create one first.")
    project_list = _bullets([p.name for p in projects], "No projects found.")
    sprint_list = _bullets([s.name for s in sprints], "No sprints available yet.")

    extracted = ""
    if project_draft is not None:
        extracted += (
            "\nFIELDS ALREADY PROVIDED FOR THE PROJECT:\n"
            f"- Project Name: {project_draft.name or 'NOT YET PROVIDED'}\n"
            f"- Workspace: {project_draft.workspace_name or 'NOT YET PROVIDED'}\n"
            f"- Deadline: {project_draft.deadline or 'NOT YET PROVIDED'}\n"
        )
    if task_draft is not None:
        extracted += (
            "\nFIELDS ALREADY PROVIDED FOR THE TASK:\n"
            f"- Project: {task_draft.project_name or 'NOT YET PROVIDED'}\n"
            f"- Sprint: {task_draft.sprint_name or 'NOT YET PROVIDED'}\n"
            f"- Title: {task_draft.title or 'NOT YET PROVIDED'}\n"
        )
    if extracted:
        extracted += "Only ask for fields shown as NOT YET PROVIDED, and never ask for the same field twice.\n"

    return f"""You are Groona, the project management assistant of this workspace.

CREATING A PROJECT
Collect these fields before creating anything:
1. Project name (required)
2. Workspace (required, must be one of AVAILABLE WORKSPACES; accept a loose match)
3. Deadline (required, a date such as "10th January 2026" or "2026-01-10")
4. Team members to invite (optional)

CREATING A TASK
Collect these fields, asking in this order:
1. Project (required, must be one of AVAILABLE PROJECTS)
2. Sprint (from AVAILABLE SPRINTS for that project)
3. Task title (required)
4. Assignee, due date and estimated hours (optional)
{extracted}
AVAILABLE WORKSPACES:
{workspace_list}

AVAILABLE PROJECTS:
{project_list}

AVAILABLE SPRINTS:
{sprint_list}

When every required field is known, reply with only the JSON action and no questions:
{{"action": "create_project", "project_name": "<name>", "workspace_name": "<workspace>", "deadline": "<YYYY-MM-DD>", "description": "<two sentences>"}}
{{"action": "create_task", "title": "<title>", "project_name": "<project>", "sprint_name": "<sprint>", "assignee_name": "<member name>", "due_date": "<YYYY-MM-DD>", "estimated_hours": <hours>, "description": "<two sentences>"}}

Never invent placeholder values; ask for what is missing instead.
Never show email addresses. Refer to team members by name and use "assignee_name" in actions.
For anything else, answer concisely and professionally, using **bold** for project names, dates and people."""


def _valid_workspace_name(value: Optional[str]) -> bool:
    if not value or not value.strip():
        return False
    text = value.strip()
    return not text.startswith("_") and text.lower() not in _PLACEHOLDER_WORKSPACES


class ChatOrchestrator:
    def __init__(
        self,
        conversations: ConversationStore,
        tenants: TenantStore,
        entities: EntityStore,
        providers: Dict[str, AIChatProvider],
        resolver: Optional[ModelResolver] = None,
        whitelist: Optional[ModelWhitelist] = None,
        settings: Optional[AssistantSettings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._conversations = conversations
        self._tenants = tenants
        self._entities = entities
        self._providers = providers
        self._resolver = resolver or ModelResolver(self._settings.catalog)
        self._whitelist = whitelist or ModelWhitelist(self._settings.whitelist)

    # ------------------------------------------------------------------
    # Model dispatch
    # ------------------------------------------------------------------
    def _provider(self, name: str) -> AIChatProvider:
        provider = self._providers.get(name)
        if provider is None or not getattr(provider, "configured", True):
            raise ProviderNotConfiguredError(f"{name.capitalize()} API key is not configured")
        return provider

    def _select_model(self, provider_name: str, provider: AIChatProvider, requested: Optional[str]) -> Optional[str]:
        if provider_name != "openrouter":
            return requested
        model = requested or self._whitelist.default_model
        catalog = self._whitelist.filter_catalog(provider.list_models())
        if not self._whitelist.is_whitelisted(model, catalog):
            LOG.warning("model_not_whitelisted", extra={"model": model, "catalog_size": len(catalog)})
            raise ModelNotAllowedError(model)
        return model

    def _complete(
        self,
        provider_name: str,
        provider: AIChatProvider,
        model: Optional[str],
        messages: List[Dict[str, str]],
    ) -> Completion:
        if provider_name == "gemini":
            return complete_with_fallback(provider, self._resolver, model, messages)
        return provider.complete(model or self._whitelist.default_model, messages)

    def _generate_description(
        self, provider_name: str, provider: AIChatProvider, model: Optional[str], kind: str, prompt: str, default: str
    ) -> str:
        messages = [
            {"role": "system", "content": DESCRIPTION_SYSTEM.format(kind=kind)},
            {"role": "user", "content": prompt},
        ]
        try:
            text = self._complete(provider_name, provider, model, messages).content.strip()
        except UpstreamModelError as exc:
            logger.warning("Description generation failed, using default: %s", exc.message)
            return default
        return text or default

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------
    def handle_turn(self, turn: ChatRequest) -> Dict[str, Any]:
        provider = self._provider(turn.provider)
        conversation = self._conversations.get(turn.conversation_id)
        if conversation is None or not conversation.is_active:
            raise NotFoundError("Conversation not found")
        model = self._select_model(turn.provider, provider, turn.model)

        conversation = self._conversations.append_message(
            conversation.conversation_id,
            ConversationMessage(role="user", content=turn.content, created_at=now_iso(), file_urls=turn.file_urls),
        )
        messages = conversation.messages
        tenant_id = turn.tenant_id

        workspaces = self._tenants.find_workspaces(tenant_id)
        projects = self._tenants.find_projects(tenant_id)
        users = self._tenants.find_users(tenant_id)

        project_intent = is_project_creation_conversation(messages)
        project_draft = extract_project_draft(messages)
        if project_intent and self._project_ready(project_draft, workspaces):
            prompt = (
                f'Generate a brief professional description (2-3 sentences) for a project named '
                f'"{project_draft.name}" with deadline {project_draft.deadline or "TBD"}.'
            )
            project_draft.description = self._generate_description(
                turn.provider, provider, model, "project", prompt,
                f"Project created via AI Assistant: {project_draft.name}",
            )
            action = {
                "action": "create_project",
                "project_name": project_draft.name,
                "workspace_name": project_draft.workspace_name,
                "deadline": project_draft.deadline,
                "description": project_draft.description,
            }
            return self._short_circuit(conversation, action, "project_data", asdict(project_draft), users)

        task_intent = is_task_creation_conversation(messages)
        task_draft = extract_task_draft(messages)
        sprints: List[Sprint] = []
        target = find_by_name(projects, task_draft.project_name) if task_draft.project_name else None
        if target is not None:
            sprints = self._tenants.find_sprints(tenant_id, target.id)
        if task_intent and check_task_draft(task_draft, projects).is_complete and task_draft.project_name:
            prompt = (
                f'Generate a brief professional description (2-3 sentences) for a task titled '
                f'"{task_draft.title}" in project "{task_draft.project_name}" '
                f"with due date {task_draft.due_date or 'TBD'}."
            )
            task_draft.description = self._generate_description(
                turn.provider, provider, model, "task", prompt,
                f"Task created via AI Assistant: {task_draft.title}",
            )
            action = {
                "action": "create_task",
                "title": task_draft.title,
                "project_name": task_draft.project_name,
                "sprint_name": task_draft.sprint_name,
                "assignee_name": task_draft.assignee_name,
                "assignee_email": task_draft.assignee_email,
                "due_date": task_draft.due_date,
                "estimated_hours": task_draft.estimated_hours,
                "description": task_draft.description,
            }
            task_data = asdict(task_draft)
            task_data.pop("assignee", None)
            task_data.update(assignee_name=task_draft.assignee_name, assignee_email=task_draft.assignee_email)
            return self._short_circuit(conversation, action, "task_data", task_data, users)

        system = build_system_prompt(
            workspaces,
            projects,
            sprints,
            project_draft=project_draft if project_intent else None,
            task_draft=task_draft if task_intent else None,
        )
        llm_messages = [{"role": "system", "content": system}]
        for message in messages[:-1][-HISTORY_WINDOW:]:
            llm_messages.append(
                {"role": message.role, "content": message.content or ("File" if message.file_urls else "")}
            )
        llm_messages.append({"role": "user", "content": self._user_block(turn, tenant_id)})

        try:
            completion = self._complete(turn.provider, provider, model, llm_messages)
        except UpstreamModelError as exc:
            requested = self._resolver.resolve(model).id if turn.provider == "gemini" else model
            graceful = self._graceful_error(exc, requested or exc.model or "")
            if graceful is None:
                raise
            return graceful

        action = parse_action(completion.content)
        display = scrub_emails(display_message(completion.content, action), users)
        conversation = self._conversations.append_message(
            conversation.conversation_id,
            ConversationMessage(role="assistant", content=completion.content, created_at=now_iso(), action=action),
        )
        self._record_usage(turn, completion)
        return {
            "success": True,
            "message": display,
            "text": display,
            "usage": completion.usage,
            "model": completion.model,
            "action": action,
            "conversation": public_conversation(conversation, users),
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _project_ready(draft: ProjectDraft, workspaces: Sequence[Workspace]) -> bool:
        if not check_project_draft(draft, workspaces).is_complete:
            return False
        # A placeholder-looking workspace blocks creation even when none is required.
        return draft.workspace_name is None or _valid_workspace_name(draft.workspace_name)

    def _user_block(self, turn: ChatRequest, tenant_id: str) -> str:
        try:
            context = build_context(self._tenants, tenant_id, turn.content)
        except Exception:
            logger.exception("Failed to build tenant context; continuing without it")
            context = ""
        if turn.context:
            context = f"{turn.context}\n{context}" if context else turn.context
        context = scrub_emails(context)
        if not context:
            return turn.content
        return f"SYSTEM DATA:\n{context}\n\nUSER QUERY: {turn.content}"

    def _short_circuit(
        self,
        conversation: Conversation,
        action: Dict[str, Any],
        data_key: str,
        data: Dict[str, Any],
        users: Sequence[TenantUser],
    ) -> Dict[str, Any]:
        payload = json.dumps(action)
        conversation = self._conversations.append_message(
            conversation.conversation_id,
            ConversationMessage(role="assistant", content=payload, created_at=now_iso(), action=action),
        )
        LOG.info("chat_creation_short_circuit", extra={"action": action["action"]})
        return {
            "success": True,
            "message": payload,
            "display_message": scrub_emails(display_message(payload, action), users),
            "action": action["action"],
            data_key: data,
            "conversation": public_conversation(conversation, users),
        }

    def _graceful_error(self, exc: UpstreamModelError, model: str) -> Optional[Dict[str, Any]]:
        if self._resolver.classify_error(exc) == "quota":
            match = _RETRY_AFTER.search(exc.message or "")
            retry_after = math.ceil(float(match.group(1))) if match else 60
            return {
                "success": False,
                "error": True,
                "code": "TOKENS_EXPIRED",
                "model": model,
                "message": f"Tokens expired for {model}. Please try a different model.",
                "retryAfter": retry_after,
            }
        if exc.status == 404 or "not found" in (exc.message or "").lower():
            return {
                "success": False,
                "error": True,
                "code": "MODEL_NOT_FOUND",
                "model": model,
                "message": f"Model {model} is not available. Please try a different model.",
            }
        return None

    def _record_usage(self, turn: ChatRequest, completion: Completion) -> None:
        if completion.total_tokens <= 0:
            return
        try:
            self._entities.record_token_usage(
                {
                    "tenant_id": turn.tenant_id,
                    "user_id": turn.user_id,
                    "model": completion.model,
                    "total_tokens": completion.total_tokens,
                }
            )
        except Exception:
            logger.exception("Failed to record token usage")
