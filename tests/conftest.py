import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


_ENV_KEYS = (
    "GEMINI_API_KEY",
    "GEMINI_API_KEY_2",
    "OPENROUTER_API_KEY",
    "FRONTEND_URL",
    "REDIS_URL",
    "GROONA_STORE_IMPL",
    "GROONA_DEFAULT_MODEL",
    "GROONA_LIVE_MODELS",
    "GROONA_OPENROUTER_WHITELIST",
    "GROONA_SMTP_HOST",
    "GROONA_SMTP_USER",
    "GROONA_SMTP_PASSWORD",
)


@pytest.fixture(autouse=True)
def _reset_singletons(monkeypatch):
    """Every test starts from in-memory stores and an environment without credentials."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)

    from src.groona import config
    from src.groona.infrastructure import conversation_store, events, notifier, tenant_store
    from src.groona.api.routers import assistant

    monkeypatch.setattr(config, "_settings", None)
    monkeypatch.setattr(tenant_store, "_store", None)
    monkeypatch.setattr(conversation_store, "_store", None)
    monkeypatch.setattr(notifier, "_notifier", None)
    monkeypatch.setattr(events, "_publisher", None)
    monkeypatch.setattr(assistant, "_providers", None)
    yield


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send_email(self, to, template_type, data):
        self.sent.append((to, template_type, data))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store():
    from src.groona.infrastructure.tenant_store import InMemoryTenantStore

    return InMemoryTenantStore()
