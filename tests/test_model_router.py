"""Unit tests for `ModelResolver` resolution and fallback policy."""

from __future__ import annotations

from types import MappingProxyType

import pytest

from src.groona.config import DEFAULT_DISPLAY_NAMES, DEFAULT_FALLBACK_CHAIN, ModelCatalogConfig
from src.groona.domain.errors import UpstreamModelError
from src.groona.services.model_router import ModelResolver


@pytest.fixture
def resolver() -> ModelResolver:
    return ModelResolver(ModelCatalogConfig())


def test_resolve_maps_empty_and_default_to_primary(resolver):
    assert resolver.resolve(None).id == "gemini-2.5-flash"
    assert resolver.resolve("").id == "gemini-2.5-flash"
    assert resolver.resolve("default").id == "gemini-2.5-flash"


def test_resolve_passes_other_ids_through(resolver):
    assert resolver.resolve("gemma-3-27b").id == "gemma-3-27b"
    assert resolver.resolve("models/gemini-3-flash").id == "gemini-3-flash"
    assert resolver.resolve("some-unknown-model").id == "some-unknown-model"


def test_live_models_detected_and_lose_system_instructions(resolver):
    live = resolver.describe("gemini-2.5-flash-native-audio-dialog")
    assert live.is_live is True
    assert live.supports_system_instructions is False
    assert resolver.is_live_model("gemini-2.0-flash-live-001")
    assert not resolver.is_live_model("gemini-2.5-flash")


def test_configured_live_only_ids_are_live():
    resolver = ModelResolver(ModelCatalogConfig(live_only_models=("gemini-special",)))
    assert resolver.is_live_model("gemini-special")


def test_default_catalog_tables_are_read_only():
    first, second = ModelCatalogConfig(), ModelCatalogConfig()
    assert first.fallback_chain is DEFAULT_FALLBACK_CHAIN
    assert second.display_names is DEFAULT_DISPLAY_NAMES
    assert first.fallback_chain["gemini-embedding-1.0"] is None
    with pytest.raises(TypeError):
        first.fallback_chain["gemini-2.5-flash"] = None  # type: ignore[index]


def test_should_fallback_on_quota_status():
    resolver = ModelResolver()
    assert resolver.should_fallback({"status": 429}, "gemini-2.5-flash") is True


def test_explicit_none_entry_never_falls_back():
    resolver = ModelResolver()
    assert resolver.should_fallback({"status": 429}, "gemini-embedding-1.0") is False
    # The positional list has no say once the chain says None.
    assert resolver.next_fallback("gemini-embedding-1.0") is None


def test_should_fallback_false_for_unknown_model(resolver):
    assert resolver.should_fallback({"status": 429}, "not-in-chain") is False


@pytest.mark.parametrize(
    "error,kind",
    [
        ({"status": 429}, "quota"),
        ({"message": "You exceeded your current quota"}, "quota"),
        ({"message": "429 Too Many Requests"}, "quota"),
        ({"status": 404}, "technical"),
        ({"status": 503}, "technical"),
        ({"message": "model not found"}, "technical"),
        ({"message": "WebSocket error: closed"}, "technical"),
        (UpstreamModelError("timeout: read timed out"), "technical"),
        ({"status": 401, "message": "unauthorized"}, None),
    ],
)
def test_classify_error(resolver, error, kind):
    assert resolver.classify_error(error) == kind


def test_unclassified_error_does_not_fall_back(resolver):
    assert resolver.should_fallback({"status": 401, "message": "bad key"}, "gemini-2.5-flash") is False


def test_next_fallback_follows_chain(resolver):
    nxt = resolver.next_fallback("gemini-2.5-flash")
    assert nxt is not None
    assert nxt.id == "gemini-2.5-flash-lite"
    assert nxt.display_name == "Gemini 2.5 Flash Lite"


def test_next_fallback_uses_priority_list_for_ids_missing_from_chain():
    config = ModelCatalogConfig(
        fallback_chain=MappingProxyType({"a": "b"}),
        priority_list=("x", "y", "z"),
    )
    resolver = ModelResolver(config)
    assert resolver.next_fallback("a").id == "b"
    assert resolver.next_fallback("x").id == "y"
    assert resolver.next_fallback("z") is None
    assert resolver.next_fallback("unknown") is None


def test_chain_terminates_or_loops_back_within_hop_limit(resolver):
    for start in resolver.config.fallback_chain:
        seen = [start]
        current = start
        for _ in range(resolver.config.max_fallback_hops):
            nxt = resolver.next_fallback(current)
            if nxt is None or nxt.id in seen or nxt.id == resolver.config.default_model:
                break
            seen.append(nxt.id)
            current = nxt.id
        else:
            pytest.fail(f"chain from {start} did not settle: {seen}")


def test_descriptor_holds_fallback_id_only(resolver):
    descriptor = resolver.describe("gemini-2.5-flash")
    assert descriptor.fallback == "gemini-2.5-flash-lite"
