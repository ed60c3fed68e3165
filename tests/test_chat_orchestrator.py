import json

import pytest

from src.groona.config import AssistantSettings
from src.groona.domain.chat_models import ChatRequest
from src.groona.domain.errors import (
    ModelNotAllowedError,
    NotFoundError,
    ProviderNotConfiguredError,
    UpstreamModelError,
)
from src.groona.infrastructure.conversation_store import InMemoryConversationStore
from src.groona.services.ai_provider import Completion
from src.groona.services.chat_orchestrator import (
    ChatOrchestrator,
    build_context,
    parse_action,
    scrub_emails,
)


TENANT = "t1"


class FakeProvider:
    def __init__(self, name="gemini", reply="ok", tokens=0, error=None, models=None, configured=True):
        self.name = name
        self.reply = reply
        self.tokens = tokens
        self.error = error
        self.models = models or []
        self.configured = configured
        self.calls = []

    def list_models(self):
        return self.models

    def complete(self, model, messages, temperature=0.7, max_tokens=2000):
        self.calls.append((model, messages))
        if self.error is not None:
            raise self.error
        return Completion(content=self.reply, usage={"total_tokens": self.tokens}, model=model)


@pytest.fixture
def conversations():
    return InMemoryConversationStore()


@pytest.fixture
def tenant(store):
    store.add_workspace(TENANT, "Engineering", is_default=True)
    store.add_user(TENANT, "Alice Smith", "alice@example.com")
    return store


def _orchestrator(conversations, store, **providers):
    return ChatOrchestrator(conversations, store, store, providers, settings=AssistantSettings())


def _turn(conversation_id, content, **kwargs):
    return ChatRequest(conversation_id=conversation_id, content=content, tenant_id=TENANT, user_id="u1", **kwargs)


def test_complete_project_request_short_circuits(conversations, tenant):
    provider = FakeProvider(reply="A focused delivery project.")
    conv = conversations.create(TENANT, "u1")
    result = _orchestrator(conversations, tenant, gemini=provider).handle_turn(
        _turn(conv.conversation_id, "create a project (Apollo, 10 jan 2025, Engineering)")
    )

    assert result["action"] == "create_project"
    assert result["display_message"] == "Your project **Apollo** has been created successfully!"
    assert result["project_data"]["name"] == "Apollo"
    assert result["project_data"]["deadline"] == "2025-01-10"
    assert result["project_data"]["description"] == "A focused delivery project."
    assert json.loads(result["message"])["workspace_name"] == "Engineering"
    stored = conversations.get(conv.conversation_id).messages
    assert [m.role for m in stored] == ["user", "assistant"]
    assert stored[1].action["action"] == "create_project"


def test_incomplete_project_request_asks_the_model(conversations, tenant):
    provider = FakeProvider(reply="Which workspace should it go in?")
    conv = conversations.create(TENANT, "u1")
    result = _orchestrator(conversations, tenant, gemini=provider).handle_turn(
        _turn(conv.conversation_id, "create a project called Orion")
    )
    assert result["message"] == "Which workspace should it go in?"
    system = provider.calls[0][1][0]["content"]
    assert "- Project Name: Orion" in system
    assert "- Workspace: NOT YET PROVIDED" in system


def test_complete_task_request_short_circuits(conversations, tenant):
    tenant.create_project({"tenant_id": TENANT, "name": "Apollo"})
    conv = conversations.create(TENANT, "u1")
    result = _orchestrator(conversations, tenant, gemini=FakeProvider(reply="")).handle_turn(
        _turn(conv.conversation_id, "create a task (Apollo, Sprint 1, Login page, Alice Smith)")
    )
    assert result["action"] == "create_task"
    data = result["task_data"]
    assert data["title"] == "Login page"
    assert data["assignee_name"] == "Alice Smith"
    assert "assignee" not in data
    assert data["description"] == "Task created via AI Assistant: Login page"


def test_general_reply_is_scrubbed_and_usage_recorded(conversations, tenant):
    provider = FakeProvider(reply="Ask alice@example.com or bob@other.org.", tokens=12)
    conv = conversations.create(TENANT, "u1")
    result = _orchestrator(conversations, tenant, gemini=provider).handle_turn(
        _turn(conv.conversation_id, "who is on the team?")
    )

    assert result["success"] is True
    assert result["message"] == "Ask Alice Smith or [email hidden]."
    assert result["model"] == "gemini-2.5-flash"
    assert tenant.token_usage_total(TENANT) == 12
    user_block = provider.calls[0][1][-1]["content"]
    assert user_block == "SYSTEM DATA:\nWorkspaces: Engineering\nTeam members: Alice Smith\n\nUSER QUERY: who is on the team?"
    # The raw reply is stored; scrubbing applies to what is shown.
    assert conversations.get(conv.conversation_id).messages[-1].content == "Ask alice@example.com or bob@other.org."
    assert result["conversation"]["messages"][-1]["content"] == "Ask Alice Smith or [email hidden]."
    assert result["conversation"]["messages"][0]["content"] == "who is on the team?"


def test_history_window_excludes_current_message(conversations, tenant):
    conv = conversations.create(TENANT, "u1")
    provider = FakeProvider(reply="noted")
    orchestrator = _orchestrator(conversations, tenant, gemini=provider)
    for i in range(7):
        orchestrator.handle_turn(_turn(conv.conversation_id, f"note {i}"))
    messages = provider.calls[-1][1]
    assert messages[0]["role"] == "system"
    assert len(messages) == 1 + 10 + 1
    assert messages[-2] == {"role": "assistant", "content": "noted"}


def test_quota_exhaustion_is_a_graceful_reply(conversations, tenant):
    error = UpstreamModelError("Quota exceeded, retry in 12.5s", status=429)
    conv = conversations.create(TENANT, "u1")
    result = _orchestrator(conversations, tenant, gemini=FakeProvider(error=error)).handle_turn(
        _turn(conv.conversation_id, "hello there")
    )
    assert result["success"] is False
    assert result["code"] == "TOKENS_EXPIRED"
    assert result["retryAfter"] == 13
    assert result["model"] == "gemini-2.5-flash"


def test_unreadable_retry_hint_uses_default_wait(conversations, tenant):
    error = UpstreamModelError("Too Many Requests, retry in .s", status=429)
    conv = conversations.create(TENANT, "u1")
    result = _orchestrator(conversations, tenant, gemini=FakeProvider(error=error)).handle_turn(
        _turn(conv.conversation_id, "hello there")
    )
    assert result["code"] == "TOKENS_EXPIRED"
    assert result["retryAfter"] == 60


def test_missing_model_is_a_graceful_reply(conversations, tenant):
    error = UpstreamModelError("model is not found for API version v1beta", status=404)
    conv = conversations.create(TENANT, "u1")
    result = _orchestrator(conversations, tenant, gemini=FakeProvider(error=error)).handle_turn(
        _turn(conv.conversation_id, "hello there")
    )
    assert result["code"] == "MODEL_NOT_FOUND"


def test_other_upstream_errors_propagate(conversations, tenant):
    error = UpstreamModelError("invalid api key", status=401)
    conv = conversations.create(TENANT, "u1")
    with pytest.raises(UpstreamModelError):
        _orchestrator(conversations, tenant, gemini=FakeProvider(error=error)).handle_turn(
            _turn(conv.conversation_id, "hello there")
        )


def test_openrouter_rejects_model_outside_whitelist(conversations, tenant):
    provider = FakeProvider(name="openrouter", models=[{"id": "openai/gpt-4o", "name": "GPT-4o"}])
    conv = conversations.create(TENANT, "u1")
    with pytest.raises(ModelNotAllowedError):
        _orchestrator(conversations, tenant, openrouter=provider).handle_turn(
            _turn(conv.conversation_id, "hello", provider="openrouter", model="openai/gpt-4o")
        )
    assert conversations.get(conv.conversation_id).messages == []


def test_openrouter_whitelisted_model_is_called(conversations, tenant):
    provider = FakeProvider(
        name="openrouter",
        reply="hi",
        models=[{"id": "qwen/qwen3-4b:free", "name": "Qwen: Qwen3 4B (free)"}],
    )
    conv = conversations.create(TENANT, "u1")
    result = _orchestrator(conversations, tenant, openrouter=provider).handle_turn(
        _turn(conv.conversation_id, "hello", provider="openrouter", model="qwen/qwen3-4b:free")
    )
    assert result["model"] == "qwen/qwen3-4b:free"


def test_unknown_or_inactive_conversation(conversations, tenant):
    orchestrator = _orchestrator(conversations, tenant, gemini=FakeProvider())
    with pytest.raises(NotFoundError):
        orchestrator.handle_turn(_turn("missing", "hello"))
    conv = conversations.create(TENANT, "u1")
    conversations.deactivate(conv.conversation_id)
    with pytest.raises(NotFoundError):
        orchestrator.handle_turn(_turn(conv.conversation_id, "hello"))


def test_unconfigured_provider(conversations, tenant):
    orchestrator = _orchestrator(conversations, tenant, gemini=FakeProvider(configured=False))
    with pytest.raises(ProviderNotConfiguredError) as info:
        orchestrator.handle_turn(_turn("any", "hello"))
    assert info.value.code == "API_KEY_MISSING"


def test_scrub_emails():
    assert scrub_emails("mail a.b+c@mail.example.co.uk now") == "mail [email hidden] now"
    assert scrub_emails("") == ""


def test_parse_action():
    assert parse_action('Sure! {"action": "create_task", "title": "X"}') == {"action": "create_task", "title": "X"}
    assert parse_action("{not json}") is None
    assert parse_action("plain text") is None


def test_task_context_sorted_by_due_date(tenant):
    project = tenant.create_project({"tenant_id": TENANT, "name": "Apollo"})
    for title, due in (("Later", "2025-03-01"), ("Undated", None), ("Sooner", "2025-01-01")):
        tenant.create_task(
            {
                "tenant_id": TENANT,
                "project_id": project.id,
                "title": title,
                "due_date": due,
                "assigned_to": ["alice@example.com"],
            }
        )
    context = build_context(tenant, TENANT, "what tasks are due?")
    lines = context.splitlines()
    assert lines[2] == "Tasks:"
    assert lines[3] == "- Sooner [todo, medium priority] due 2025-01-01 assigned to Alice Smith"
    assert lines[5] == "- Undated [todo, medium priority] assigned to Alice Smith"
    assert "@" not in context
