"""Tests for TopicRegistry: idempotent creation, resolve, provider failures."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from notifygate import DependencyFailure, InMemoryProvider, InvalidInput, NotFound
from notifygate.provider import ProviderError
from notifygate.registry import TopicRegistry
from notifygate.retry import ProviderCaller, RetryPolicy

FAST_RETRY = RetryPolicy(max_attempts=3, backoff=0, timeout=None)


def test_create_topic_is_idempotent(provider):
    registry = TopicRegistry(provider, ProviderCaller(FAST_RETRY))
    first = registry.create_topic("alerts")
    second = registry.create_topic("alerts")
    assert first == second
    assert provider.calls["create_topic"] == 1
    assert registry.topic_count() == 1


def test_concurrent_create_topic_calls_provider_once():
    provider = InMemoryProvider(latency=0.05)
    registry = TopicRegistry(provider, ProviderCaller(FAST_RETRY))
    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(lambda _: registry.create_topic("X"), range(8)))
    assert len(set(ids)) == 1
    assert provider.calls["create_topic"] == 1


def test_resolve(provider):
    registry = TopicRegistry(provider, ProviderCaller(FAST_RETRY))
    topic_id = registry.create_topic("orders")
    assert registry.resolve("orders") == topic_id
    assert registry.get(topic_id).name == "orders"
    with pytest.raises(NotFound):
        registry.resolve("missing")


@pytest.mark.parametrize("name", ["", "   ", "has space", "dots.not.allowed", "x" * 257])
def test_invalid_names_rejected_before_provider(provider, name):
    registry = TopicRegistry(provider, ProviderCaller(FAST_RETRY))
    with pytest.raises(InvalidInput):
        registry.create_topic(name)
    assert provider.calls["create_topic"] == 0


def test_permanent_provider_failure_records_nothing(provider):
    registry = TopicRegistry(provider, ProviderCaller(FAST_RETRY))
    provider.fail_next("create_topic", ProviderError("access denied"))
    with pytest.raises(DependencyFailure) as exc:
        registry.create_topic("alerts")
    assert exc.value.retryable is False
    assert provider.calls["create_topic"] == 1
    assert registry.topic_count() == 0
    with pytest.raises(NotFound):
        registry.resolve("alerts")


def test_transient_provider_failure_is_retried(provider):
    registry = TopicRegistry(provider, ProviderCaller(FAST_RETRY))
    provider.fail_next("create_topic", ProviderError("throttled", retryable=True))
    topic_id = registry.create_topic("alerts")
    assert registry.resolve("alerts") == topic_id
    assert provider.calls["create_topic"] == 2


def test_exhausted_retries_surface_retryable_failure(provider):
    registry = TopicRegistry(provider, ProviderCaller(FAST_RETRY))
    provider.unreachable = True
    with pytest.raises(DependencyFailure) as exc:
        registry.create_topic("alerts")
    assert exc.value.retryable is True
    assert provider.calls["create_topic"] == 3
    assert registry.topic_count() == 0


def test_list_topics_in_creation_order(provider):
    registry = TopicRegistry(provider, ProviderCaller(FAST_RETRY))
    for name in ["b", "a", "c"]:
        registry.create_topic(name)
    assert [t.name for t in registry.list_topics()] == ["b", "a", "c"]
