"""Gateway facade: the operations the request front end calls."""

import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from notifygate.config import Settings
from notifygate.errors import GatewayError, InvalidInput, NotFound
from notifygate.models import PublishResult, Subscription, utc_now
from notifygate.observability import Metrics, get_logger
from notifygate.provider import DeliveryProvider
from notifygate.publisher import Publisher
from notifygate.registry import TopicRegistry
from notifygate.retry import ProviderCaller
from notifygate.subscriptions import SubscriptionManager
from notifygate.validation import validate_email, validate_message, validate_subject


class Gateway:
    """Composes the topic registry, subscription manager and publisher.

    Validation happens here before any provider call. When callers omit a
    topic id the configured default topic is used (created on first use).
    """

    def __init__(
        self,
        provider: DeliveryProvider,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings or Settings()
        self.caller = ProviderCaller(
            self.settings.retry_policy(), max_workers=self.settings.provider_workers
        )
        self.provider = provider
        self.topics = TopicRegistry(provider, caller=self.caller, clock=clock)
        self.subscriptions = SubscriptionManager(
            self.topics,
            provider,
            pending_ttl=self.settings.pending_ttl,
            caller=self.caller,
            clock=clock,
        )
        self.publisher = Publisher(self.topics, self.subscriptions, provider, caller=self.caller)
        self.metrics = Metrics()
        self._started = time.time()
        self._default_topic_id: Optional[str] = None
        self._default_lock = threading.Lock()
        self._logger = get_logger("notifygate.gateway")

    # ---- topics ----

    def create_topic(self, name: str) -> str:
        return self._tracked("create_topic", lambda: self.topics.create_topic(name))

    def default_topic_id(self) -> str:
        if self._default_topic_id is not None:
            return self._default_topic_id
        name = self.settings.default_topic
        if not name:
            raise InvalidInput("topic_id is required (no default topic configured)")
        topic_id = self.topics.create_topic(name)
        with self._default_lock:
            self._default_topic_id = topic_id
        return topic_id

    def _topic(self, topic_id: Optional[str]) -> str:
        if topic_id is None or not str(topic_id).strip():
            return self.default_topic_id()
        return str(topic_id).strip()

    # ---- subscriptions ----

    def subscribe_email(self, email: str, topic_id: Optional[str] = None) -> str:
        def run() -> str:
            endpoint = validate_email(email)
            return self.subscriptions.subscribe(self._topic(topic_id), endpoint, protocol="email")

        return self._tracked("subscribe", run)

    def confirm(self, subscription_id: str, token: str) -> Subscription:
        return self._tracked(
            "confirm", lambda: self.subscriptions.confirm(subscription_id, token)
        )

    def reject(self, subscription_id: str, reason: Optional[str] = None) -> Subscription:
        return self._tracked(
            "reject",
            lambda: self.subscriptions.reject(subscription_id, reason or "rejected by provider"),
        )

    def unsubscribe(self, subscription_id: str, missing_ok: bool = False) -> bool:
        """
        Remove a subscription. Returns False instead of raising NotFound when
        ``missing_ok`` is set and the subscription is already gone.
        """
        try:
            self._tracked("unsubscribe", lambda: self.subscriptions.unsubscribe(subscription_id))
        except NotFound:
            if not missing_ok:
                raise
            self._logger.info(
                "unsubscribe_missing_ok", extra={"subscription_id": subscription_id}
            )
            return False
        return True

    def get_subscription(self, subscription_id: str) -> Subscription:
        return self.subscriptions.get(subscription_id)

    def expire_pending(self) -> int:
        expired = self.subscriptions.expire_pending()
        if expired:
            self.metrics.increment("subscriptions_expired", expired)
        return expired

    # ---- publish ----

    def publish_message(
        self, message: str, subject: Optional[str] = None, topic_id: Optional[str] = None
    ) -> PublishResult:
        def run() -> PublishResult:
            body = validate_message(message, self.settings.max_message_bytes)
            clean_subject = validate_subject(subject)
            return self.publisher.publish(self._topic(topic_id), body, clean_subject)

        result = self._tracked("publish", run)
        self.metrics.increment("deliveries_ok", result.delivered_count)
        self.metrics.increment("deliveries_failed", result.failed_count)
        return result

    # ---- introspection ----

    def health(self) -> Dict[str, Any]:
        return {
            "uptime_sec": int(time.time() - self._started),
            "topics": self.topics.topic_count(),
            "subscriptions": sum(self.subscriptions.counts().values()),
        }

    def stats(self) -> Dict[str, Any]:
        counts = self.subscriptions.counts()
        for state, n in counts.items():
            self.metrics.set_gauge(f"subscriptions_{state.lower()}", n)
        self.metrics.set_gauge("topics", self.topics.topic_count())
        return self.metrics.snapshot()

    def close(self) -> None:
        """Shut down the provider worker pool. Later provider calls raise RuntimeError."""
        self.caller.close()

    def _tracked(self, operation: str, fn: Callable[[], Any]) -> Any:
        """Run an operation, counting successes and failures by error kind."""
        try:
            result = fn()
        except GatewayError as e:
            self.metrics.increment(f"{operation}_errors_{e.kind.value.lower()}")
            self._logger.info(
                "operation_failed",
                extra={"operation": operation, "kind": e.kind.value, "detail": e.detail},
            )
            raise
        self.metrics.increment(f"{operation}_ok")
        return result
