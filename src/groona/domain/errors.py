from __future__ import annotations

from typing import Optional


class AssistantError(Exception):
    """Base error rendered by the API as ``{"success": false, "error": ...}``."""

    status_code = 500
    code: Optional[str] = None

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AssistantError):
    """A required field is missing; the user must resupply it."""

    status_code = 400


class ResolutionError(AssistantError):
    """A user-supplied name could not be matched to a tenant record.

    The message always repeats the literal input so the user can correct it.
    """

    status_code = 400

    def __init__(self, message: str, value: Optional[str] = None) -> None:
        super().__init__(message)
        self.value = value


class ModelNotAllowedError(AssistantError):
    status_code = 400

    def __init__(self, model: str) -> None:
        super().__init__(f'Model "{model}" is not in the whitelist. Please select a valid model.')
        self.model = model


class NotFoundError(AssistantError):
    status_code = 404


class UpstreamModelError(AssistantError):
    """Error reported by an AI provider (HTTP status and/or message)."""

    status_code = 500

    def __init__(self, message: str, status: Optional[int] = None, model: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.model = model


class PersistenceError(AssistantError):
    status_code = 500


class ProviderNotConfiguredError(AssistantError):
    """The selected AI provider has no API key."""

    status_code = 500
    code = "API_KEY_MISSING"
