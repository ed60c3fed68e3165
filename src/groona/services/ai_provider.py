from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol
import json
import logging
import time

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from websockets.exceptions import WebSocketException
from websockets.sync.client import connect as ws_connect

from ..config import AssistantSettings, get_settings
from ..domain.errors import UpstreamModelError
from ..observability.metrics import MODEL_FALLBACKS
from .model_router import ModelResolver


LOG = logging.getLogger("groona.llm")


@dataclass
class Completion:
    content: str
    usage: Dict[str, int] = field(default_factory=dict)
    model: str = ""

    @property
    def total_tokens(self) -> int:
        return int(self.usage.get("total_tokens") or 0)


class AIChatProvider(Protocol):
    name: str

    def list_models(self) -> List[Dict[str, Any]]: ...

    def complete(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> Completion: ...


def _build_session() -> requests.Session:
    # 429/503 are left to the fallback loop rather than retried in place.
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(500, 502, 504),
        allowed_methods=frozenset(["POST", "GET"]),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def _error_text(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
    text = (resp.text or "").strip()
    return text[:500] or f"HTTP {resp.status_code}"


def _request(session: requests.Session, method: str, url: str, model: Optional[str], **kwargs: Any) -> Dict[str, Any]:
    try:
        resp = session.request(method, url, **kwargs)
    except requests.exceptions.Timeout as exc:
        raise UpstreamModelError(f"timeout: {exc}", model=model) from exc
    except requests.exceptions.RequestException as exc:
        raise UpstreamModelError(f"connection error: {exc}", model=model) from exc
    if resp.status_code >= 400:
        raise UpstreamModelError(_error_text(resp), status=resp.status_code, model=model)
    try:
        return resp.json()
    except ValueError as exc:
        raise UpstreamModelError(f"Invalid JSON from provider: {exc}", status=resp.status_code, model=model) from exc


def split_system(messages: List[Dict[str, str]]) -> tuple[str, List[Dict[str, str]]]:
    system_parts = [m.get("content") or "" for m in messages if m.get("role") == "system"]
    turns = [m for m in messages if m.get("role") in ("user", "assistant")]
    return "\n\n".join(p for p in system_parts if p), turns


def fold_live_prompt(messages: List[Dict[str, str]]) -> str:
    """Flatten a chat into one text turn for the live transport.

    Live sessions take no system instruction, so the instructions and the
    prior turns are carried inline ahead of the final user message.
    """

    system, turns = split_system(messages)
    current = ""
    if turns and turns[-1].get("role") == "user":
        current = turns[-1].get("content") or ""
        turns = turns[:-1]
    prompt = ""
    if system:
        prompt += f"SYSTEM INSTRUCTIONS:\n{system}\n\n"
    if turns:
        prompt += "CONVERSATION HISTORY:\n"
        for turn in turns:
            speaker = "User" if turn.get("role") == "user" else "Assistant"
            prompt += f"{speaker}: {turn.get('content') or ''}\n"
        prompt += "\n"
    prompt += f"USER: {current}"
    return prompt


class GeminiChatProvider:
    name = "gemini"

    def __init__(
        self,
        settings: Optional[AssistantSettings] = None,
        resolver: Optional[ModelResolver] = None,
        session: Optional[requests.Session] = None,
        ws_connect: Callable[..., Any] = ws_connect,
    ) -> None:
        self._settings = settings or get_settings()
        self._resolver = resolver or ModelResolver(self._settings.catalog)
        self._session = session or _build_session()
        self._ws_connect = ws_connect

    @property
    def configured(self) -> bool:
        return bool(self._settings.gemini_api_key)

    def _api_key(self, model: Optional[str] = None) -> str:
        key = self._settings.gemini_api_key
        if not key:
            raise UpstreamModelError("Gemini API key is not configured", model=model)
        return key

    def list_models(self) -> List[Dict[str, Any]]:
        data = _request(
            self._session,
            "GET",
            f"{self._settings.gemini_base_url}/models",
            None,
            params={"key": self._api_key()},
            timeout=self._settings.request_timeout,
        )
        out: List[Dict[str, Any]] = []
        for entry in data.get("models") or []:
            model_id = str(entry.get("name") or "")
            if model_id.startswith("models/"):
                model_id = model_id[len("models/"):]
            if not model_id:
                continue
            out.append(
                {
                    "id": model_id,
                    "name": entry.get("displayName") or self._resolver.display_name(model_id),
                    "description": entry.get("description"),
                    "context_length": entry.get("inputTokenLimit"),
                    "is_live": self._resolver.is_live_model(model_id),
                }
            )
        return out

    def complete(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> Completion:
        descriptor = self._resolver.describe(model)
        if descriptor.is_live:
            return self._complete_live(descriptor.id, messages, temperature)
        return self._complete_rest(descriptor.id, messages, temperature, max_tokens, descriptor.supports_system_instructions)

    def _complete_rest(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
        system_supported: bool,
    ) -> Completion:
        system, turns = split_system(messages)
        contents = [
            {"role": "model" if t.get("role") == "assistant" else "user", "parts": [{"text": t.get("content") or ""}]}
            for t in turns
        ]
        body: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
        }
        if system and system_supported:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        data = _request(
            self._session,
            "POST",
            f"{self._settings.gemini_base_url}/models/{model}:generateContent",
            model,
            params={"key": self._api_key(model)},
            json=body,
            timeout=self._settings.request_timeout,
        )
        candidates = data.get("candidates") or []
        parts = ((candidates[0].get("content") or {}).get("parts") or []) if candidates else []
        text = "".join(str(p.get("text") or "") for p in parts)
        total = int((data.get("usageMetadata") or {}).get("totalTokenCount") or 0)
        return Completion(content=text, usage={"total_tokens": total}, model=model)

    def _complete_live(self, model: str, messages: List[Dict[str, str]], temperature: float) -> Completion:
        prompt = fold_live_prompt(messages)
        last_error: Optional[UpstreamModelError] = None
        for endpoint in self._settings.gemini_live_endpoints:
            try:
                return self._live_exchange(endpoint, model, prompt, temperature)
            except UpstreamModelError as exc:
                last_error = exc
                LOG.warning("llm_live_endpoint_failed", extra={"endpoint": endpoint, "model": model, "err": exc.message})
        if last_error is not None:
            raise last_error
        raise UpstreamModelError("WebSocket error: no live endpoint configured", model=model)

    def _live_exchange(self, endpoint: str, model: str, prompt: str, temperature: float) -> Completion:
        timeout = self._settings.request_timeout
        setup = {
            "setup": {
                "model": f"models/{model}",
                "generation_config": {
                    "response_modalities": ["TEXT"],
                    "temperature": temperature,
                    "top_p": 0.95,
                    "top_k": 40,
                },
            }
        }
        turn = {
            "client_content": {
                "turns": [{"role": "user", "parts": [{"text": prompt}]}],
                "turn_complete": True,
            }
        }
        parts: List[str] = []
        total = 0
        try:
            with self._ws_connect(f"{endpoint}?key={self._api_key(model)}", open_timeout=timeout) as ws:
                ws.send(json.dumps(setup))
                deadline = time.monotonic() + timeout
                while True:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise UpstreamModelError(f"timeout: no complete live response within {timeout:.0f}s", model=model)
                    raw = ws.recv(timeout=remaining)
                    if isinstance(raw, bytes):
                        raw = raw.decode("utf-8")
                    msg = json.loads(raw)
                    if msg.get("error"):
                        err = msg["error"]
                        detail = err.get("message") if isinstance(err, dict) else str(err)
                        raise UpstreamModelError(f"WebSocket error: {detail}", model=model)
                    if "setupComplete" in msg:
                        ws.send(json.dumps(turn))
                        continue
                    usage = msg.get("usageMetadata") or {}
                    if usage.get("totalTokenCount"):
                        total = int(usage["totalTokenCount"])
                    server = msg.get("serverContent") or {}
                    for part in (server.get("modelTurn") or {}).get("parts") or []:
                        if part.get("text"):
                            parts.append(str(part["text"]))
                    if server.get("turnComplete"):
                        break
        except TimeoutError as exc:
            raise UpstreamModelError(f"timeout: {exc}", model=model) from exc
        except (OSError, WebSocketException) as exc:
            raise UpstreamModelError(f"WebSocket error: {exc}", model=model) from exc
        except ValueError as exc:
            raise UpstreamModelError(f"WebSocket error: invalid message ({exc})", model=model) from exc
        return Completion(content="".join(parts), usage={"total_tokens": total}, model=model)


class OpenRouterChatProvider:
    name = "openrouter"

    def __init__(self, settings: Optional[AssistantSettings] = None, session: Optional[requests.Session] = None) -> None:
        self._settings = settings or get_settings()
        self._session = session or _build_session()

    @property
    def configured(self) -> bool:
        return bool(self._settings.openrouter_api_key)

    def _headers(self, model: Optional[str] = None) -> Dict[str, str]:
        key = self._settings.openrouter_api_key
        if not key:
            raise UpstreamModelError("OpenRouter API key is not configured", model=model)
        return {
            "Authorization": f"Bearer {key}",
            "HTTP-Referer": self._settings.openrouter_referer,
            "X-Title": self._settings.app_title,
            "Content-Type": "application/json",
        }

    def list_models(self) -> List[Dict[str, Any]]:
        data = _request(
            self._session,
            "GET",
            f"{self._settings.openrouter_base_url}/models",
            None,
            headers=self._headers(),
            timeout=self._settings.request_timeout,
        )
        return list(data.get("data") or [])

    def complete(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> Completion:
        data = _request(
            self._session,
            "POST",
            f"{self._settings.openrouter_base_url}/chat/completions",
            model,
            headers=self._headers(model),
            json={"model": model, "messages": messages, "temperature": temperature, "max_tokens": max_tokens},
            timeout=self._settings.request_timeout,
        )
        choices = data.get("choices") or []
        content = ((choices[0].get("message") or {}).get("content") if choices else None) or "No response generated"
        usage = data.get("usage") or {}
        return Completion(content=content, usage={"total_tokens": int(usage.get("total_tokens") or 0)}, model=model)


def complete_with_fallback(
    provider: AIChatProvider,
    resolver: ModelResolver,
    requested_model: Optional[str],
    messages: List[Dict[str, str]],
    temperature: float = 0.7,
    max_tokens: int = 2000,
) -> Completion:
    """Call ``provider`` walking the resolver's fallback chain on upstream errors.

    Stops when the resolver declines to fall back, the chain ends, a model
    would be tried twice, or the hop limit is reached; the last error is
    re-raised (quota exhaustion lists every model tried).
    """

    current = resolver.resolve(requested_model)
    attempted: List[str] = []
    max_hops = resolver.config.max_fallback_hops
    while True:
        attempted.append(current.id)
        try:
            completion = provider.complete(current.id, messages, temperature=temperature, max_tokens=max_tokens)
            if len(attempted) > 1:
                LOG.info("llm_fallback_succeeded", extra={"model": current.id, "attempted": list(attempted)})
            return completion
        except UpstreamModelError as exc:
            reason = resolver.classify_error(exc)
            nxt = resolver.next_fallback(current.id) if resolver.should_fallback(exc, current.id) else None
            if nxt is None or nxt.id in attempted or len(attempted) > max_hops:
                LOG.warning(
                    "llm_fallback_exhausted",
                    extra={"model": current.id, "attempted": list(attempted), "reason": reason, "err": exc.message},
                )
                if reason == "quota" and len(attempted) > 1:
                    raise UpstreamModelError(
                        f"Quota exceeded. Tried models: {', '.join(attempted)}. {exc.message}",
                        status=429,
                        model=current.id,
                    ) from exc
                raise
            LOG.warning(
                "llm_fallback",
                extra={"from_model": current.id, "to_model": nxt.id, "reason": reason, "err": exc.message},
            )
            MODEL_FALLBACKS.labels(from_model=current.id, to_model=nxt.id, reason=reason or "unknown").inc()
            current = nxt
