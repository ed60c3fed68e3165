"""Model resolution and fallback policy for the primary chat provider.

The resolver never calls a provider itself. It answers three questions for
the caller that drives the retry loop: which concrete model to use, whether a
given upstream error should trigger a fallback, and which model comes next.
Keeping the policy free of I/O makes it unit-testable with plain config.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from ..config import ModelCatalogConfig


QUOTA_MARKERS = ("quota", "rate limit", "Too Many Requests", "RPD", "RPM", "exceeded")
TECHNICAL_MARKERS = ("not found", "not supported", "connection", "timeout", "socket", "WebSocket")
TECHNICAL_STATUSES = (400, 404, 503)
LIVE_MARKERS = ("live", "native-audio-dialog", "native-audio")


@dataclass(frozen=True)
class ModelDescriptor:
    """Resolved view of one model; derived on demand, never persisted."""

    id: str
    display_name: str
    is_live: bool
    supports_system_instructions: bool
    fallback: Optional[str] = None
    description: Optional[str] = None
    context_length: Optional[int] = None


def _error_status(error: Any) -> Optional[int]:
    if isinstance(error, Mapping):
        status = error.get("status")
    elif hasattr(error, "status"):
        status = error.status
    else:
        status = getattr(error, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _error_message(error: Any) -> str:
    if isinstance(error, Mapping):
        return str(error.get("message") or "")
    message = getattr(error, "message", None)
    if isinstance(message, str):
        return message
    return str(error) if error is not None else ""


class ModelResolver:
    """Policy object over an immutable :class:`ModelCatalogConfig`."""

    def __init__(self, config: Optional[ModelCatalogConfig] = None) -> None:
        self._config = config or ModelCatalogConfig()

    @property
    def config(self) -> ModelCatalogConfig:
        return self._config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def resolve(self, requested: Optional[str]) -> ModelDescriptor:
        """Map a requested id to the concrete model to call.

        Empty or ``"default"`` selects the configured primary; any other id is
        passed through unchanged.
        """

        model_id = (requested or "").strip()
        if model_id.startswith("models/"):
            model_id = model_id[len("models/"):]
        if not model_id or model_id == "default":
            model_id = self._config.default_model
        return self.describe(model_id)

    def describe(self, model_id: str) -> ModelDescriptor:
        is_live = self.is_live_model(model_id)
        return ModelDescriptor(
            id=model_id,
            display_name=self.display_name(model_id),
            is_live=is_live,
            supports_system_instructions=not is_live,
            fallback=self._fallback_id(model_id),
        )

    def display_name(self, model_id: str) -> str:
        name = self._config.display_names.get(model_id)
        if name:
            return name
        return " ".join(part.capitalize() for part in model_id.replace("_", "-").split("-") if part)

    def is_live_model(self, model_id: Optional[str]) -> bool:
        if not model_id:
            return False
        if model_id in self._config.live_only_models:
            return True
        return any(marker in model_id for marker in LIVE_MARKERS)

    def classify_error(self, error: Any) -> Optional[str]:
        """Return ``"quota"``, ``"technical"`` or ``None`` for an upstream error."""

        if error is None:
            return None
        status = _error_status(error)
        message = _error_message(error)
        if status == 429 or any(marker in message for marker in QUOTA_MARKERS):
            return "quota"
        if status in TECHNICAL_STATUSES or any(marker in message for marker in TECHNICAL_MARKERS):
            return "technical"
        return None

    def should_fallback(self, error: Any, model_id: str) -> bool:
        chain = self._config.fallback_chain
        if model_id not in chain or chain[model_id] is None:
            return False
        return self.classify_error(error) is not None

    def next_fallback(self, model_id: str) -> Optional[ModelDescriptor]:
        fallback = self._fallback_id(model_id)
        if fallback is None:
            return None
        return self.describe(fallback)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _fallback_id(self, model_id: str) -> Optional[str]:
        chain = self._config.fallback_chain
        if model_id in chain:
            # An explicit entry, including None, is authoritative.
            return chain[model_id]
        priority = self._config.priority_list
        if model_id not in priority:
            return None
        idx = priority.index(model_id)
        if idx >= len(priority) - 1:
            return None
        return priority[idx + 1]
