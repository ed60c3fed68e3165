from __future__ import annotations

from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from ...config import get_settings
from ...domain.chat_models import ChatModelOption, ChatRequest, ConversationCreate
from ...domain.drafts import ProjectDraft, TaskDraft, assignee_from_fields
from ...domain.errors import NotFoundError, ProviderNotConfiguredError, UpstreamModelError, ValidationError
from ...domain.models import CreateProjectRequest, CreateTaskRequest
from ...infrastructure.conversation_store import get_conversation_store
from ...infrastructure.notifier import get_notifier
from ...infrastructure.tenant_store import get_tenant_store
from ...services.ai_provider import AIChatProvider, GeminiChatProvider, OpenRouterChatProvider
from ...services.chat_orchestrator import ChatOrchestrator, public_conversation
from ...services.creation import BackgroundTaskScheduler, ProjectCreator, TaskCreator
from ...services.model_router import ModelResolver
from ...services.model_whitelist import ModelWhitelist


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assistant", tags=["assistant"])

# Conversations owned by this assistant; other assistants share the store.
ASSISTANT_TYPE = "groona"

_providers: Optional[Dict[str, AIChatProvider]] = None


def get_providers() -> Dict[str, AIChatProvider]:
    global _providers
    if _providers is None:
        settings = get_settings()
        _providers = {
            "gemini": GeminiChatProvider(settings, ModelResolver(settings.catalog)),
            "openrouter": OpenRouterChatProvider(settings),
        }
    return _providers


def get_chat_orchestrator(providers: Dict[str, AIChatProvider] = Depends(get_providers)) -> ChatOrchestrator:
    settings = get_settings()
    store = get_tenant_store(settings)
    return ChatOrchestrator(get_conversation_store(settings), store, store, providers, settings=settings)


def get_project_creator() -> ProjectCreator:
    store = get_tenant_store()
    return ProjectCreator(store, store, get_notifier())


def get_task_creator() -> TaskCreator:
    store = get_tenant_store()
    return TaskCreator(store, store, get_notifier())


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------
@router.post("/chat")
def chat(payload: ChatRequest, orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator)) -> Dict[str, Any]:
    return orchestrator.handle_turn(payload)


@router.post("/create-project")
def create_project(payload: CreateProjectRequest, creator: ProjectCreator = Depends(get_project_creator)) -> Dict[str, Any]:
    if not payload.project_name or not payload.project_name.strip():
        raise ValidationError("Missing required fields: project_name")
    draft = ProjectDraft(
        name=payload.project_name,
        description=payload.description,
        deadline=payload.deadline,
        workspace_id=payload.workspace_id,
        workspace_name=payload.workspace_name,
        team_members=list(payload.team_members),
    )
    project = creator.create(draft, payload.tenant_id, payload.user_id, payload.user_email)
    return {
        "success": True,
        "project": project.model_dump(),
        "message": f'Project "{project.name}" created successfully!',
    }


@router.post("/create-task")
def create_task(
    payload: CreateTaskRequest,
    background_tasks: BackgroundTasks,
    creator: TaskCreator = Depends(get_task_creator),
) -> Dict[str, Any]:
    if not payload.title or not payload.title.strip():
        raise ValidationError("Missing required fields: title")
    draft = TaskDraft(
        title=payload.title,
        description=payload.description,
        project_id=payload.project_id,
        project_name=payload.project_name,
        sprint_name=payload.sprint_name,
        assignee=assignee_from_fields(payload.assignee_name, payload.assignee_email),
        due_date=payload.due_date,
        estimated_hours=payload.estimated_hours,
        priority=payload.priority or "medium",
    )
    task = creator.create(
        draft,
        payload.tenant_id,
        payload.user_id,
        payload.user_email,
        scheduler=BackgroundTaskScheduler(background_tasks),
    )
    return {
        "success": True,
        "task": task.model_dump(),
        "message": f'Task "{task.title}" created successfully!',
    }


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------
def _gemini_catalog(provider: AIChatProvider, resolver: ModelResolver) -> List[ChatModelOption]:
    remote: List[Dict[str, Any]] = []
    if getattr(provider, "configured", True):
        try:
            remote = provider.list_models()
        except UpstreamModelError as exc:
            logger.warning("Could not list Gemini models, using configured catalog: %s", exc.message)
    if not remote:
        remote = [{"id": m, "name": resolver.display_name(m)} for m in resolver.config.priority_list]
    options = [
        ChatModelOption(
            id=entry["id"],
            name=entry.get("name") or resolver.display_name(entry["id"]),
            description=entry.get("description"),
            context_length=entry.get("context_length"),
            provider="gemini",
            is_live=resolver.is_live_model(entry["id"]),
        )
        for entry in remote
        if entry.get("id") and "embedding" not in entry["id"]
    ]
    return options


@router.get("/models")
def list_models(
    provider: str = Query("gemini", pattern="^(gemini|openrouter)$"),
    providers: Dict[str, AIChatProvider] = Depends(get_providers),
) -> Dict[str, Any]:
    settings = get_settings()
    if provider == "openrouter":
        client = providers["openrouter"]
        if not getattr(client, "configured", True):
            raise ProviderNotConfiguredError("Openrouter API key is not configured")
        whitelist = ModelWhitelist(settings.whitelist)
        models = [
            ChatModelOption(
                id=m.id,
                name=m.display_name,
                description=m.description,
                context_length=m.context_length,
                provider="openrouter",
            )
            for m in whitelist.filter_catalog(client.list_models())
        ]
        default_model = whitelist.default_model
    else:
        resolver = ModelResolver(settings.catalog)
        models = _gemini_catalog(providers["gemini"], resolver)
        default_model = resolver.config.default_model
    return {
        "success": True,
        "provider": provider,
        "default_model": default_model,
        "models": [m.model_dump() for m in models],
    }


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------
@router.get("/conversations")
def list_conversations(tenant_id: str = Query(...), user_id: str = Query(...)) -> Dict[str, Any]:
    conversations = get_conversation_store().list(tenant_id, user_id, assistant_type=ASSISTANT_TYPE)
    users = get_tenant_store().find_users(tenant_id)
    return {"success": True, "conversations": [public_conversation(c, users) for c in conversations]}


@router.post("/conversations", status_code=201)
def create_conversation(payload: ConversationCreate) -> Dict[str, Any]:
    conversation = get_conversation_store().create(
        payload.tenant_id, payload.user_id, title=payload.title, assistant_type=ASSISTANT_TYPE
    )
    return {"success": True, "conversation": conversation.model_dump()}


@router.get("/conversations/{conversation_id}")
def get_conversation(conversation_id: str) -> Dict[str, Any]:
    conversation = get_conversation_store().get(conversation_id)
    if conversation is None or not conversation.is_active:
        raise NotFoundError("Conversation not found")
    users = get_tenant_store().find_users(conversation.tenant_id)
    return {"success": True, "conversation": public_conversation(conversation, users)}


@router.delete("/conversations/{conversation_id}")
def delete_conversation(conversation_id: str) -> Dict[str, Any]:
    if not get_conversation_store().deactivate(conversation_id):
        raise NotFoundError("Conversation not found")
    return {"success": True, "message": "Conversation deleted"}


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------
@router.get("/usage/stats")
def usage_stats(tenant_id: str = Query(...), user_id: Optional[str] = Query(None)) -> Dict[str, Any]:
    total = get_tenant_store().token_usage_total(tenant_id, user_id)
    return {"success": True, "tenant_id": tenant_id, "user_id": user_id, "total_tokens": total}
