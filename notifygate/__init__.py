"""Notification-dispatch gateway: topics, confirmed subscriptions and fan-out publishing."""

from notifygate.config import Settings
from notifygate.errors import (
    Conflict,
    DependencyFailure,
    ErrorKind,
    GatewayError,
    InvalidInput,
    NotFound,
    Timeout,
)
from notifygate.facade import Gateway
from notifygate.memory_provider import InMemoryProvider
from notifygate.models import DeliveryOutcome, PublishResult, Subscription, SubscriptionState, Topic
from notifygate.provider import DeliveryProvider, PerEndpointProvider, ProviderError
from notifygate.publisher import Publisher
from notifygate.registry import TopicRegistry
from notifygate.subscriptions import SubscriptionManager

__all__ = [
    "Conflict",
    "DeliveryOutcome",
    "DeliveryProvider",
    "DependencyFailure",
    "ErrorKind",
    "Gateway",
    "GatewayError",
    "InMemoryProvider",
    "InvalidInput",
    "NotFound",
    "PerEndpointProvider",
    "ProviderError",
    "PublishResult",
    "Publisher",
    "Settings",
    "Subscription",
    "SubscriptionManager",
    "SubscriptionState",
    "Timeout",
    "Topic",
    "TopicRegistry",
]
