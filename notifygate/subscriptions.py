"""Subscription manager: endpoints per topic and their confirmation state machine.

    Pending --confirm--> Confirmed
    Pending --expiry / provider rejection--> Failed
    Failed  --subscribe again--> Pending (same id, new provider registration)

Records are removed only by unsubscribe. Provider calls are made without
holding the state lock; a record exists only once the provider acknowledged it.
"""

import hmac
import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from notifygate.errors import Conflict, InvalidInput, NotFound
from notifygate.locks import SingleFlight
from notifygate.models import Subscription, SubscriptionState, new_id, utc_now
from notifygate.observability import get_logger
from notifygate.provider import DeliveryProvider, EndpointRegistration
from notifygate.registry import TopicRegistry
from notifygate.retry import ProviderCaller
from notifygate.validation import validate_endpoint

DEFAULT_PENDING_TTL = timedelta(days=3)


class SubscriptionManager:
    def __init__(
        self,
        topics: TopicRegistry,
        provider: DeliveryProvider,
        pending_ttl: timedelta = DEFAULT_PENDING_TTL,
        caller: ProviderCaller | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._topics = topics
        self._provider = provider
        self._pending_ttl = pending_ttl
        self._caller = caller or ProviderCaller()
        self._clock = clock
        self._subscriptions: Dict[str, Subscription] = {}
        self._by_endpoint: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()
        self._flights = SingleFlight()
        self._logger = get_logger("notifygate.subscriptions")

    @property
    def pending_ttl(self) -> timedelta:
        return self._pending_ttl

    # ---- subscribe ----

    def subscribe(self, topic_id: str, endpoint: str, protocol: str = "email") -> str:
        """
        Return the subscription id for ``endpoint`` on ``topic_id``.
        An active (Pending or Confirmed) record is reused without calling the
        provider; otherwise the endpoint is registered and a Pending record created.
        """
        endpoint = validate_endpoint(endpoint, protocol)
        topic = self._topics.get(topic_id)
        key = (topic_id, endpoint)
        existing = self._active_id(key)
        if existing is not None:
            return existing
        return self._flights.do(
            key,
            lambda: self._register(topic.id, topic.provider_topic_id, endpoint, protocol),
        )

    def _active_id(self, key: Tuple[str, str]) -> Optional[str]:
        with self._lock:
            sub = self._find(key)
            if sub is not None and sub.is_active:
                return sub.id
        return None

    def _find(self, key: Tuple[str, str]) -> Optional[Subscription]:
        """Lookup with lazy expiry. Caller holds the lock."""
        sub_id = self._by_endpoint.get(key)
        if sub_id is None:
            return None
        sub = self._subscriptions[sub_id]
        self._expire_if_due(sub, self._clock())
        return sub

    def _register(
        self, topic_id: str, provider_topic_id: str, endpoint: str, protocol: str
    ) -> str:
        key = (topic_id, endpoint)
        existing = self._active_id(key)
        if existing is not None:
            return existing
        registration = self._caller.call(
            "register_endpoint",
            lambda: self._provider.register_endpoint(provider_topic_id, endpoint, protocol),
            on_late_result=self._drop_late_registration,
        )
        now = self._clock()
        with self._lock:
            sub = self._find(key)
            if sub is not None and sub.is_active:
                return sub.id
            if sub is not None:
                sub.provider_subscription_id = registration.provider_subscription_id
                sub.confirmation_token = registration.confirmation_token
                sub.state = SubscriptionState.PENDING
                sub.pending_since = now
                sub.failure_reason = None
                event = "resubscribed"
            else:
                sub = Subscription(
                    id=new_id("sub"),
                    topic_id=topic_id,
                    endpoint=endpoint,
                    protocol=protocol,
                    provider_subscription_id=registration.provider_subscription_id,
                    confirmation_token=registration.confirmation_token,
                    created_at=now,
                    pending_since=now,
                )
                self._subscriptions[sub.id] = sub
                self._by_endpoint[key] = sub.id
                event = "subscribed"
        self._logger.info(
            event,
            extra={"topic_id": topic_id, "subscription_id": sub.id, "protocol": protocol},
        )
        return sub.id

    def _drop_late_registration(self, registration: EndpointRegistration) -> None:
        """A registration that finished after its deadline has no local record; undo it."""
        self._logger.warning(
            "late_registration_dropped",
            extra={"provider_subscription_id": registration.provider_subscription_id},
        )
        self._provider.deregister_endpoint(registration.provider_subscription_id)

    # ---- state transitions ----

    def confirm(self, subscription_id: str, token: str) -> Subscription:
        """Pending -> Confirmed. Confirming a Confirmed subscription is a no-op."""
        with self._lock:
            sub = self._get_locked(subscription_id)
            if sub.state is SubscriptionState.CONFIRMED:
                return replace(sub)
            if sub.state is SubscriptionState.FAILED:
                raise Conflict(
                    f"subscription {subscription_id!r} has failed ({sub.failure_reason}); subscribe again"
                )
            if not token or not hmac.compare_digest(str(token), sub.confirmation_token):
                raise InvalidInput("invalid confirmation token")
            sub.state = SubscriptionState.CONFIRMED
            sub.confirmed_at = self._clock()
            snapshot = replace(sub)
        self._logger.info(
            "confirmed",
            extra={"topic_id": snapshot.topic_id, "subscription_id": subscription_id},
        )
        return snapshot

    def reject(self, subscription_id: str, reason: str = "rejected by provider") -> Subscription:
        """Pending -> Failed when the provider reports the endpoint as undeliverable."""
        with self._lock:
            sub = self._get_locked(subscription_id)
            if sub.state is SubscriptionState.CONFIRMED:
                raise Conflict(f"subscription {subscription_id!r} is already confirmed")
            if sub.state is SubscriptionState.PENDING:
                self._fail(sub, reason)
            return replace(sub)

    def _fail(self, sub: Subscription, reason: str) -> None:
        sub.state = SubscriptionState.FAILED
        sub.failure_reason = reason
        self._logger.warning(
            "subscription_failed",
            extra={"subscription_id": sub.id, "topic_id": sub.topic_id, "reason": reason},
        )

    def _expire_if_due(self, sub: Subscription, now: datetime) -> bool:
        if sub.state is SubscriptionState.PENDING and now - sub.pending_since >= self._pending_ttl:
            self._fail(sub, "confirmation window expired")
            return True
        return False

    def expire_pending(self) -> int:
        """Mark every Pending subscription past the window as Failed. Returns how many."""
        now = self._clock()
        with self._lock:
            expired = sum(
                1 for sub in self._subscriptions.values() if self._expire_if_due(sub, now)
            )
        if expired:
            self._logger.info("pending_expired", extra={"count": expired})
        return expired

    # ---- unsubscribe ----

    def unsubscribe(self, subscription_id: str) -> None:
        """Deregister with the provider, then drop the record whatever its state."""
        self._flights.do(("unsubscribe", subscription_id), lambda: self._unsubscribe(subscription_id))

    def _unsubscribe(self, subscription_id: str) -> None:
        with self._lock:
            sub = self._get_locked(subscription_id)
            provider_subscription_id = sub.provider_subscription_id
        while True:
            self._caller.call(
                "deregister_endpoint",
                lambda pid=provider_subscription_id: self._provider.deregister_endpoint(pid),
            )
            with self._lock:
                current = self._subscriptions.get(subscription_id)
                if current is None:
                    break
                if current.provider_subscription_id == provider_subscription_id:
                    del self._subscriptions[subscription_id]
                    self._by_endpoint.pop((current.topic_id, current.endpoint), None)
                    break
                # re-armed by a concurrent subscribe while we were deregistering
                provider_subscription_id = current.provider_subscription_id
        self._logger.info(
            "unsubscribed",
            extra={"topic_id": sub.topic_id, "subscription_id": subscription_id},
        )

    # ---- queries ----

    def _get_locked(self, subscription_id: str) -> Subscription:
        sub = self._subscriptions.get(subscription_id)
        if sub is None:
            raise NotFound(f"subscription {subscription_id!r} not found")
        self._expire_if_due(sub, self._clock())
        return sub

    def get(self, subscription_id: str) -> Subscription:
        with self._lock:
            return replace(self._get_locked(subscription_id))

    def list_for_topic(self, topic_id: str) -> List[Subscription]:
        """All subscriptions of a topic in creation order (expiry applied)."""
        if not self._topics.exists(topic_id):
            raise NotFound(f"topic {topic_id!r} not found")
        now = self._clock()
        with self._lock:
            subs = [s for s in self._subscriptions.values() if s.topic_id == topic_id]
            for sub in subs:
                self._expire_if_due(sub, now)
            return [replace(s) for s in subs]

    def list_confirmed(self, topic_id: str) -> List[Subscription]:
        return [
            s for s in self.list_for_topic(topic_id) if s.state is SubscriptionState.CONFIRMED
        ]

    def counts(self) -> Dict[str, int]:
        with self._lock:
            out = {state.value: 0 for state in SubscriptionState}
            for sub in self._subscriptions.values():
                out[sub.state.value] += 1
            return out
