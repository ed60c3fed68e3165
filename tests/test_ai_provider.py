import json

import pytest

from src.groona.config import AssistantSettings
from src.groona.domain.errors import UpstreamModelError
from src.groona.services.ai_provider import (
    Completion,
    GeminiChatProvider,
    OpenRouterChatProvider,
    complete_with_fallback,
    fold_live_prompt,
)
from src.groona.services.model_router import ModelResolver


SETTINGS = AssistantSettings(gemini_api_key="g-key", openrouter_api_key="or-key")
LIVE_MODEL = "gemini-2.5-flash-native-audio-dialog"

MESSAGES = [
    {"role": "system", "content": "Be brief."},
    {"role": "user", "content": "hi"},
    {"role": "assistant", "content": "hello"},
    {"role": "user", "content": "status?"},
]


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.responses.pop(0)


class FakeSocket:
    def __init__(self, incoming):
        self.incoming = [json.dumps(m) if isinstance(m, dict) else m for m in incoming]
        self.sent = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def send(self, data):
        self.sent.append(json.loads(data))

    def recv(self, timeout=None):
        return self.incoming.pop(0)


def test_gemini_rest_request_shape():
    session = FakeSession(
        FakeResponse(
            payload={
                "candidates": [{"content": {"parts": [{"text": "All "}, {"text": "good"}]}}],
                "usageMetadata": {"totalTokenCount": 42},
            }
        )
    )
    provider = GeminiChatProvider(SETTINGS, session=session)
    completion = provider.complete("gemini-2.5-flash", MESSAGES, temperature=0.3, max_tokens=100)

    assert completion.content == "All good"
    assert completion.total_tokens == 42
    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url.endswith("/models/gemini-2.5-flash:generateContent")
    assert kwargs["params"] == {"key": "g-key"}
    body = kwargs["json"]
    assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
    assert body["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
    assert body["generationConfig"] == {"temperature": 0.3, "maxOutputTokens": 100}


def test_gemini_http_error_carries_status():
    session = FakeSession(FakeResponse(429, {"error": {"message": "Resource exhausted: quota"}}))
    provider = GeminiChatProvider(SETTINGS, session=session)
    with pytest.raises(UpstreamModelError) as info:
        provider.complete("gemini-2.5-flash", MESSAGES)
    assert info.value.status == 429
    assert info.value.message == "Resource exhausted: quota"
    assert info.value.model == "gemini-2.5-flash"


def test_gemini_list_models_strips_prefix():
    session = FakeSession(
        FakeResponse(payload={"models": [{"name": "models/gemini-2.5-flash", "inputTokenLimit": 1000}]})
    )
    models = GeminiChatProvider(SETTINGS, session=session).list_models()
    assert models == [
        {
            "id": "gemini-2.5-flash",
            "name": "Gemini 2.5 Flash",
            "description": None,
            "context_length": 1000,
            "is_live": False,
        }
    ]


def test_fold_live_prompt():
    assert fold_live_prompt(MESSAGES) == (
        "SYSTEM INSTRUCTIONS:\nBe brief.\n\n"
        "CONVERSATION HISTORY:\nUser: hi\nAssistant: hello\n\n"
        "USER: status?"
    )
    assert fold_live_prompt([{"role": "user", "content": "hi"}]) == "USER: hi"


def test_live_model_uses_socket_transport():
    sockets = []

    def connect(url, open_timeout=None):
        sock = FakeSocket(
            [
                {"setupComplete": {}},
                {"serverContent": {"modelTurn": {"parts": [{"text": "Hel"}]}}},
                {"serverContent": {"modelTurn": {"parts": [{"text": "lo"}]}, "turnComplete": True}},
            ]
        )
        sockets.append((url, sock))
        return sock

    provider = GeminiChatProvider(SETTINGS, session=FakeSession(), ws_connect=connect)
    completion = provider.complete(LIVE_MODEL, MESSAGES)

    assert completion.content == "Hello"
    url, sock = sockets[0]
    assert url.endswith("BidiGenerateContent?key=g-key")
    assert sock.sent[0]["setup"]["model"] == f"models/{LIVE_MODEL}"
    turn = sock.sent[1]["client_content"]["turns"][0]["parts"][0]["text"]
    assert turn.startswith("SYSTEM INSTRUCTIONS:\nBe brief.")
    assert turn.endswith("USER: status?")


def test_live_transport_tries_next_endpoint():
    attempts = []

    def connect(url, open_timeout=None):
        attempts.append(url)
        if len(attempts) == 1:
            raise OSError("refused")
        return FakeSocket([{"setupComplete": {}}, {"serverContent": {"turnComplete": True}}])

    provider = GeminiChatProvider(SETTINGS, session=FakeSession(), ws_connect=connect)
    assert provider.complete(LIVE_MODEL, MESSAGES).content == ""
    assert len(attempts) == 2
    assert "v1beta" in attempts[0] and "v1alpha" in attempts[1]


def test_live_server_error_is_upstream_error():
    def connect(url, open_timeout=None):
        return FakeSocket([{"error": {"message": "model not found"}}])

    provider = GeminiChatProvider(SETTINGS, session=FakeSession(), ws_connect=connect)
    with pytest.raises(UpstreamModelError) as info:
        provider.complete(LIVE_MODEL, MESSAGES)
    assert info.value.message == "WebSocket error: model not found"


def test_openrouter_headers_and_default_content():
    session = FakeSession(FakeResponse(payload={"choices": [{"message": {"content": ""}}], "usage": {"total_tokens": 7}}))
    provider = OpenRouterChatProvider(SETTINGS, session=session)
    completion = provider.complete("qwen/qwen3-4b:free", MESSAGES)

    assert completion.content == "No response generated"
    assert completion.total_tokens == 7
    _, url, kwargs = session.calls[0]
    assert url.endswith("/chat/completions")
    assert kwargs["headers"]["Authorization"] == "Bearer or-key"
    assert kwargs["headers"]["X-Title"] == "Groona Assistant"
    assert kwargs["json"]["messages"] == MESSAGES


def test_missing_key_is_reported_as_not_configured():
    provider = OpenRouterChatProvider(AssistantSettings(), session=FakeSession())
    assert provider.configured is False
    with pytest.raises(UpstreamModelError):
        provider.complete("qwen/qwen3-4b:free", MESSAGES)


class ScriptedProvider:
    name = "gemini"

    def __init__(self, failures):
        self.failures = failures
        self.calls = []

    def complete(self, model, messages, temperature=0.7, max_tokens=2000):
        self.calls.append(model)
        error = self.failures.get(model)
        if error is not None:
            raise error
        return Completion(content=f"from {model}", usage={"total_tokens": 5}, model=model)


def test_fallback_moves_to_next_model_on_quota():
    provider = ScriptedProvider({"gemini-2.5-flash": UpstreamModelError("quota exceeded", status=429)})
    completion = complete_with_fallback(provider, ModelResolver(), "default", MESSAGES)
    assert completion.model == "gemini-2.5-flash-lite"
    assert provider.calls == ["gemini-2.5-flash", "gemini-2.5-flash-lite"]


def test_fallback_exhaustion_lists_tried_models():
    class AlwaysQuota(ScriptedProvider):
        def complete(self, model, messages, temperature=0.7, max_tokens=2000):
            self.calls.append(model)
            raise UpstreamModelError("Too Many Requests, retry in 12.5s", status=429, model=model)

    provider = AlwaysQuota({})
    with pytest.raises(UpstreamModelError) as info:
        complete_with_fallback(provider, ModelResolver(), "gemini-2.5-flash", MESSAGES)

    assert len(provider.calls) == len(set(provider.calls)) == 8
    assert info.value.status == 429
    assert info.value.message.startswith("Quota exceeded. Tried models: gemini-2.5-flash, gemini-2.5-flash-lite")
    assert info.value.message.endswith("retry in 12.5s")


def test_unclassified_error_is_not_retried():
    error = UpstreamModelError("invalid api key", status=401)
    provider = ScriptedProvider({"gemini-2.5-flash": error})
    with pytest.raises(UpstreamModelError) as info:
        complete_with_fallback(provider, ModelResolver(), None, MESSAGES)
    assert info.value is error
    assert provider.calls == ["gemini-2.5-flash"]


def test_model_without_fallback_fails_immediately():
    provider = ScriptedProvider({"gemini-embedding-1.0": UpstreamModelError("quota", status=429)})
    with pytest.raises(UpstreamModelError):
        complete_with_fallback(provider, ModelResolver(), "gemini-embedding-1.0", MESSAGES)
    assert provider.calls == ["gemini-embedding-1.0"]
