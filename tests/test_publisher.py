"""Tests for fan-out publishing and per-subscriber outcome aggregation."""

import logging
from dataclasses import replace

import pytest

from notifygate import DependencyFailure, ErrorKind, Gateway, InMemoryProvider, NotFound, SubscriptionState
from notifygate.provider import ProviderUnavailable

from tests.helpers import confirm_token, subscribe_confirmed


def test_publish_with_no_confirmed_subscribers(gateway, provider):
    topic_id = gateway.create_topic("alerts")
    gateway.subscribe_email("pending@example.com", topic_id)
    result = gateway.publish_message("hello", "hi", topic_id)
    assert result.outcomes == []
    assert result.topic_id == topic_id
    assert provider.calls["send"] == 0


def test_alerts_scenario(gateway, provider):
    t1 = gateway.create_topic("alerts")
    s1 = gateway.subscribe_email("a@x.com", t1)
    assert gateway.get_subscription(s1).state is SubscriptionState.PENDING
    confirmed = gateway.confirm(s1, confirm_token(gateway, provider, s1))
    assert confirmed.state is SubscriptionState.CONFIRMED

    result = gateway.publish_message("hello", "hi", t1)
    assert [(o.subscription_id, o.delivered) for o in result.outcomes] == [(s1, True)]
    sent = provider.delivered_to("a@x.com")
    assert len(sent) == 1
    assert sent[0].message == "hello"
    assert sent[0].subject == "hi"
    assert sent[0].message_id == result.message_id


def test_partial_failure_is_reported_not_raised(gateway, provider):
    topic_id = gateway.create_topic("alerts")
    ids = [
        subscribe_confirmed(gateway, provider, topic_id, email)
        for email in ("a@example.com", "b@example.com", "c@example.com")
    ]
    provider.failing_endpoints.add("b@example.com")

    result = gateway.publish_message("hello", "hi", topic_id)

    assert [o.subscription_id for o in result.outcomes] == ids
    assert [o.delivered for o in result.outcomes] == [True, False, True]
    assert result.outcomes[1].error is ErrorKind.DEPENDENCY_FAILURE
    assert result.delivered_count == 2
    assert result.failed_count == 1
    assert provider.delivered_to("c@example.com")


def test_expired_subscriptions_are_excluded(gateway, provider, clock):
    topic_id = gateway.create_topic("alerts")
    confirmed = subscribe_confirmed(gateway, provider, topic_id, "a@example.com")
    stale = gateway.subscribe_email("b@example.com", topic_id)
    clock.advance(120)

    result = gateway.publish_message("hello", None, topic_id)

    assert [o.subscription_id for o in result.outcomes] == [confirmed]
    assert gateway.get_subscription(stale).state is SubscriptionState.FAILED


def test_topic_level_fanout_provider(settings, clock):
    provider = InMemoryProvider(report_outcomes=False)
    gateway = Gateway(provider, settings, clock=clock)
    topic_id = gateway.create_topic("alerts")
    ids = [
        subscribe_confirmed(gateway, provider, topic_id, email)
        for email in ("a@example.com", "b@example.com")
    ]
    result = gateway.publish_message("hello", "hi", topic_id)
    assert [(o.subscription_id, o.delivered) for o in result.outcomes] == [(i, True) for i in ids]
    assert provider.calls["send"] == 1


def test_unreachable_provider_fails_the_call(gateway, provider):
    topic_id = gateway.create_topic("alerts")
    subscribe_confirmed(gateway, provider, topic_id, "a@example.com")
    provider.unreachable = True
    with pytest.raises(DependencyFailure) as exc:
        gateway.publish_message("hello", "hi", topic_id)
    assert exc.value.retryable is True
    assert provider.calls["send"] == gateway.settings.provider_max_attempts


def test_unreachable_provider_recovers_on_retry(gateway, provider):
    topic_id = gateway.create_topic("alerts")
    sub_id = subscribe_confirmed(gateway, provider, topic_id, "a@example.com")
    provider.fail_next("send", ProviderUnavailable())
    result = gateway.publish_message("hello", "hi", topic_id)
    assert [(o.subscription_id, o.delivered) for o in result.outcomes] == [(sub_id, True)]
    assert provider.calls["send"] == 2
    assert len(provider.delivered_to("a@example.com")) == 1


def test_publish_unknown_topic(gateway):
    with pytest.raises(NotFound):
        gateway.publish_message("hello", "hi", "top_missing")


def test_slow_endpoint_times_out_alone(settings, clock):
    provider = InMemoryProvider()
    gateway = Gateway(provider, replace(settings, provider_timeout_sec=0.1), clock=clock)
    topic_id = gateway.create_topic("alerts")
    ids = [
        subscribe_confirmed(gateway, provider, topic_id, email)
        for email in ("a@example.com", "slow@example.com", "c@example.com")
    ]
    provider.slow_endpoints["slow@example.com"] = 0.3

    result = gateway.publish_message("hello", "hi", topic_id)

    assert [o.subscription_id for o in result.outcomes] == ids
    assert [o.delivered for o in result.outcomes] == [True, False, True]
    assert result.outcomes[1].error is ErrorKind.TIMEOUT
    assert result.message_id is not None
    assert provider.calls["send"] == 1
    assert provider.delivered_to("c@example.com")
    gateway.close()


def test_unreachable_after_first_delivery_is_an_outcome(gateway, provider, caplog):
    topic_id = gateway.create_topic("alerts")
    ids = [
        subscribe_confirmed(gateway, provider, topic_id, email)
        for email in ("a@example.com", "b@example.com")
    ]
    deliver = provider.deliver_to

    def drop_second(provider_subscription_id, *args):
        if provider.delivered_to("a@example.com"):
            raise ProviderUnavailable("connection reset")
        return deliver(provider_subscription_id, *args)

    provider.deliver_to = drop_second
    with caplog.at_level(logging.WARNING, logger="notifygate.provider.memory"):
        result = gateway.publish_message("hello", "hi", topic_id)

    assert [(o.subscription_id, o.delivered) for o in result.outcomes] == [
        (ids[0], True),
        (ids[1], False),
    ]
    assert result.outcomes[1].error is ErrorKind.DEPENDENCY_FAILURE
    assert provider.calls["send"] == 1
    failures = [r for r in caplog.records if r.getMessage() == "endpoint_delivery_failed"]
    assert len(failures) == 1
    assert failures[0].recipient == gateway.get_subscription(ids[1]).provider_subscription_id
