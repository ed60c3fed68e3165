"""Process configuration for the assistant service.

Everything here is immutable and built once from the environment. Services
receive the objects they need through their constructors so tests can pass
hand-made instances without touching ``os.environ``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple


DEFAULT_MODEL = "gemini-2.5-flash"

# model id -> next model to try; ``None`` means the model must never fall back.
DEFAULT_FALLBACK_CHAIN: Mapping[str, Optional[str]] = MappingProxyType(
    {
        "gemini-2.5-flash": "gemini-2.5-flash-lite",
        "gemini-2.5-flash-lite": "gemini-3-flash",
        "gemini-3-flash": "gemma-3-12b",
        "gemma-3-12b": "gemma-3-27b",
        "gemma-3-27b": "gemma-3-4b",
        "gemma-3-4b": "gemma-3-2b",
        "gemma-3-2b": "gemma-3-1b",
        "gemma-3-1b": "gemini-2.5-flash",
        "gemini-2.5-flash-native-audio-dialog": "gemini-2.5-flash",
        "gemini-2.5-flash-tts": "gemini-2.5-flash",
        "gemini-robotics-er-1.5-preview": "gemini-2.5-flash",
        "gemini-embedding-1.0": None,
    }
)

DEFAULT_PRIORITY_LIST: Tuple[str, ...] = (
    "gemini-2.5-flash",
    "gemini-2.5-flash-lite",
    "gemini-3-flash",
    "gemini-2.5-flash-native-audio-dialog",
    "gemini-2.5-flash-tts",
    "gemini-robotics-er-1.5-preview",
    "gemma-3-12b",
    "gemma-3-27b",
    "gemma-3-4b",
    "gemma-3-2b",
    "gemma-3-1b",
    "gemini-embedding-1.0",
)

DEFAULT_DISPLAY_NAMES: Mapping[str, str] = MappingProxyType(
    {
        "gemini-2.5-flash": "Gemini 2.5 Flash",
        "gemini-2.5-flash-lite": "Gemini 2.5 Flash Lite",
        "gemini-3-flash": "Gemini 3 Flash",
        "gemini-2.5-flash-native-audio-dialog": "Gemini 2.5 Flash Native Audio Dialog",
        "gemini-2.5-flash-tts": "Gemini 2.5 Flash TTS",
        "gemini-robotics-er-1.5-preview": "Gemini Robotics ER 1.5 Preview",
        "gemma-3-12b": "Gemma 3 12B",
        "gemma-3-27b": "Gemma 3 27B",
        "gemma-3-4b": "Gemma 3 4B",
        "gemma-3-2b": "Gemma 3 2B",
        "gemma-3-1b": "Gemma 3 1B",
        "gemini-embedding-1.0": "Gemini Embedding 1.0",
    }
)

DEFAULT_WHITELIST_PATTERNS: Tuple[str, ...] = (
    "devstral-2-2512",
    "devstral 2 2512",
    "mimo-v2",
    "mimo v2",
    "kat-coder-pro",
    "kat coder pro",
    "deepseek-r1-0528",
    "deepseek r1 0528",
    "deepseek-r1t-chimera",
    "deepseek r1t chimera",
    "deepseek-r1t2-chimera",
    "deepseek r1t2 chimera",
    "r1t-chimera",
    "r1t chimera",
    "trinity-mini",
    "trinity mini",
    "gemma-3-27b",
    "gemma 3 27b",
    "llama-3.2-3b-instruct",
    "llama 3.2 3b instruct",
    "llama-3.3-70b-instruct",
    "llama 3.3 70b instruct",
    "hermes-3-405b-instruct",
    "hermes 3 405b instruct",
    "glm-4.5-air",
    "glm 4.5 air",
    "mistral-small-3.1-24b",
    "mistral small 3.1 24b",
    "nemotron-nano-12b-2-vl",
    "nemotron nano 12b 2 vl",
    "qwen3-4b",
    "qwen3 4b",
    "mistral-7b-instruct",
    "mistral 7b instruct",
    "venice-uncensored",
    "venice uncensored",
)


def _flag(env: Mapping[str, str], key: str, default: str = "0") -> bool:
    return (env.get(key, default) or "").strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class ModelCatalogConfig:
    """Static description of the primary provider's models and fallbacks."""

    default_model: str = DEFAULT_MODEL
    fallback_chain: Mapping[str, Optional[str]] = field(default_factory=lambda: DEFAULT_FALLBACK_CHAIN)
    priority_list: Tuple[str, ...] = DEFAULT_PRIORITY_LIST
    display_names: Mapping[str, str] = field(default_factory=lambda: DEFAULT_DISPLAY_NAMES)
    live_only_models: Tuple[str, ...] = ()
    max_fallback_hops: int = 8

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "ModelCatalogConfig":
        env = env if env is not None else os.environ
        default_model = (env.get("GROONA_DEFAULT_MODEL") or DEFAULT_MODEL).strip()
        live_raw = env.get("GROONA_LIVE_MODELS") or ""
        live = tuple(m.strip() for m in live_raw.split(",") if m.strip())
        return ModelCatalogConfig(default_model=default_model, live_only_models=live)


@dataclass(frozen=True)
class WhitelistConfig:
    patterns: Tuple[str, ...] = DEFAULT_WHITELIST_PATTERNS
    default_model: str = "meta-llama/llama-3.2-3b-instruct:free"

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "WhitelistConfig":
        env = env if env is not None else os.environ
        raw = env.get("GROONA_OPENROUTER_WHITELIST") or ""
        patterns = tuple(p.strip() for p in raw.split(",") if p.strip()) or DEFAULT_WHITELIST_PATTERNS
        default_model = env.get("OPENROUTER_DEFAULT_MODEL") or "meta-llama/llama-3.2-3b-instruct:free"
        return WhitelistConfig(patterns=patterns, default_model=default_model)


@dataclass(frozen=True)
class SmtpConfig:
    host: Optional[str] = None
    port: int = 587
    user: Optional[str] = None
    password: Optional[str] = None
    sender: Optional[str] = None
    use_tls: bool = True
    use_ssl: bool = False
    timeout: int = 10

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "SmtpConfig":
        env = env if env is not None else os.environ
        user = env.get("GROONA_SMTP_USER")
        return SmtpConfig(
            host=env.get("GROONA_SMTP_HOST"),
            port=int(env.get("GROONA_SMTP_PORT", "587")),
            user=user,
            password=env.get("GROONA_SMTP_PASSWORD"),
            sender=env.get("GROONA_SMTP_SENDER") or user,
            use_tls=_flag(env, "GROONA_SMTP_USE_TLS", "1"),
            use_ssl=_flag(env, "GROONA_SMTP_USE_SSL", "0"),
            timeout=int(env.get("GROONA_SMTP_TIMEOUT", "10")),
        )


@dataclass(frozen=True)
class AssistantSettings:
    gemini_api_key: Optional[str] = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    # Streaming endpoints for live models, tried in order.
    gemini_live_endpoints: Tuple[str, ...] = (
        "wss://generativelanguage.googleapis.com/ws/google.ai.generativelanguage.v1beta.GenerativeService/BidiGenerateContent",
        "wss://generativelanguage.googleapis.com/ws/google.ai.generativelanguage.v1alpha.GenerativeService/BidiGenerateContent",
    )
    openrouter_api_key: Optional[str] = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_referer: str = "http://localhost:5173"
    app_title: str = "Groona Assistant"
    request_timeout: float = 60.0
    frontend_url: Optional[str] = None
    store_impl: str = "memory"
    mongo_url: str = "mongodb://localhost:27017"
    mongo_db: str = "groona"
    redis_url: Optional[str] = None
    catalog: ModelCatalogConfig = field(default_factory=ModelCatalogConfig)
    whitelist: WhitelistConfig = field(default_factory=WhitelistConfig)
    smtp: SmtpConfig = field(default_factory=SmtpConfig)

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "AssistantSettings":
        env = env if env is not None else os.environ
        frontend_url = (env.get("FRONTEND_URL") or "").strip().rstrip("/") or None
        return AssistantSettings(
            gemini_api_key=env.get("GEMINI_API_KEY_2") or env.get("GEMINI_API_KEY"),
            gemini_base_url=env.get("GEMINI_BASE_URL") or "https://generativelanguage.googleapis.com/v1beta",
            openrouter_api_key=env.get("OPENROUTER_API_KEY"),
            openrouter_base_url=env.get("OPENROUTER_BASE_URL") or "https://openrouter.ai/api/v1",
            openrouter_referer=env.get("OPENROUTER_REFERER") or frontend_url or "http://localhost:5173",
            request_timeout=float(env.get("GROONA_LLM_TIMEOUT", "60")),
            frontend_url=frontend_url,
            store_impl=(env.get("GROONA_STORE_IMPL") or "memory").strip().lower(),
            mongo_url=env.get("MONGO_URL", "mongodb://localhost:27017"),
            mongo_db=env.get("MONGO_DB", "groona"),
            redis_url=env.get("REDIS_URL") or None,
            catalog=ModelCatalogConfig.from_env(env),
            whitelist=WhitelistConfig.from_env(env),
            smtp=SmtpConfig.from_env(env),
        )


_settings: Optional[AssistantSettings] = None


def get_settings() -> AssistantSettings:
    global _settings
    if _settings is None:
        _settings = AssistantSettings.from_env()
    return _settings
