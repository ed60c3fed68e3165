from __future__ import annotations

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional

from ..config import WhitelistConfig
from .model_router import ModelDescriptor


LOG = logging.getLogger("groona.llm")

_SEPARATORS = re.compile(r"[-_\s]+")
_NAME_NOISE = re.compile(r"[^a-z0-9\s-]")


def normalize_pattern(value: str) -> str:
    return _SEPARATORS.sub(" ", (value or "").lower())


class ModelWhitelist:
    """Allow-list gate over the secondary provider's remote catalog."""

    def __init__(self, config: Optional[WhitelistConfig] = None) -> None:
        self._config = config or WhitelistConfig()
        self._patterns = tuple(normalize_pattern(p) for p in self._config.patterns if p.strip())

    @property
    def default_model(self) -> str:
        return self._config.default_model

    def matches(self, model_id: str, name: Optional[str] = None) -> bool:
        norm_id = normalize_pattern(model_id)
        norm_name = normalize_pattern(_NAME_NOISE.sub("", name.lower())) if name else ""
        for pattern in self._patterns:
            if pattern in norm_id or (norm_name and pattern in norm_name):
                return True
        return False

    def filter_catalog(self, remote_models: Iterable[Mapping[str, Any]]) -> List[ModelDescriptor]:
        out: List[ModelDescriptor] = []
        for entry in remote_models or []:
            if not isinstance(entry, Mapping):
                continue
            model_id = entry.get("id")
            name = entry.get("name")
            if not model_id or not name:
                continue
            if "embedding" in str(model_id).lower():
                continue
            if not self.matches(str(model_id), str(name)):
                continue
            out.append(
                ModelDescriptor(
                    id=str(model_id),
                    display_name=str(name),
                    is_live=False,
                    supports_system_instructions=True,
                    description=entry.get("description") or f"Model: {name}",
                    context_length=int(entry.get("context_length") or 0),
                )
            )
        out.sort(key=lambda m: m.display_name.lower())
        return out

    def is_whitelisted(self, model_id: Optional[str], catalog: Optional[Iterable[ModelDescriptor]] = None) -> bool:
        """Check a user-chosen model id.

        With a filtered catalog the id must appear in it; without one the id
        itself is checked against the patterns.
        """

        if not model_id:
            return False
        if catalog is not None:
            allowed = any(m.id == model_id for m in catalog)
        else:
            allowed = self.matches(model_id)
        if not allowed:
            LOG.warning("model_not_whitelisted", extra={"model": model_id})
        return allowed
