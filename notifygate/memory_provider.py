"""In-memory Delivery Provider (no external service) with failure injection."""

import secrets
import threading
import time
import uuid
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from notifygate.provider import (
    EndpointRegistration,
    PerEndpointProvider,
    ProviderError,
    ProviderUnavailable,
    SendReceipt,
)


@dataclass(frozen=True)
class SentMessage:
    message_id: str
    provider_topic_id: str
    provider_subscription_id: str
    endpoint: str
    message: str
    subject: Optional[str]


class InMemoryProvider(PerEndpointProvider):
    """Keeps topics, endpoints and an outbox in memory.

    ``report_outcomes=False`` makes it behave like a provider that fans out on
    its own and only acknowledges the message as a whole.
    """

    name = "memory"

    def __init__(self, report_outcomes: bool = True, latency: float = 0.0) -> None:
        super().__init__()
        self.report_outcomes = report_outcomes
        self.per_endpoint = report_outcomes
        self.latency = latency
        self.calls: Counter = Counter()
        self.outbox: List[SentMessage] = []
        self.unreachable = False
        self.failing_endpoints: Set[str] = set()
        self.rejected_endpoints: Set[str] = set()
        self.slow_endpoints: Dict[str, float] = {}
        self._scripted_errors: Dict[str, List[ProviderError]] = {}
        self._topics: Dict[str, str] = {}
        self._endpoints: Dict[str, Tuple[str, str]] = {}
        self._tokens: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    # ---- failure injection ----

    def fail_next(self, operation: str, *errors: ProviderError) -> None:
        """Queue errors raised by the next calls of ``operation`` (one per call)."""
        with self._lock:
            self._scripted_errors.setdefault(operation, []).extend(errors)

    def _enter(self, operation: str) -> None:
        with self._lock:
            self.calls[operation] += 1
            queued = self._scripted_errors.get(operation)
            error = queued.pop(0) if queued else None
        if self.latency:
            time.sleep(self.latency)
        if error is not None:
            raise error
        if self.unreachable:
            raise ProviderUnavailable()

    # ---- DeliveryProvider ----

    def create_topic(self, name: str) -> str:
        self._enter("create_topic")
        with self._lock:
            return self._topics.setdefault(name, f"mem:topic:{name}")

    def register_endpoint(
        self, provider_topic_id: str, endpoint: str, protocol: str
    ) -> EndpointRegistration:
        self._enter("register_endpoint")
        if endpoint in self.rejected_endpoints:
            raise ProviderError(f"endpoint rejected: {endpoint}")
        subscription_id = f"mem:sub:{uuid.uuid4().hex[:12]}"
        token = secrets.token_urlsafe(16)
        with self._lock:
            self._endpoints[subscription_id] = (provider_topic_id, endpoint)
            self._tokens[(provider_topic_id, endpoint)] = token
        return EndpointRegistration(
            provider_subscription_id=subscription_id, confirmation_token=token
        )

    def deregister_endpoint(self, provider_subscription_id: str) -> None:
        self._enter("deregister_endpoint")
        with self._lock:
            self._endpoints.pop(provider_subscription_id, None)

    def send(
        self,
        provider_topic_id: str,
        message: str,
        subject: Optional[str],
        recipients: Sequence[str],
        deliver_with: Optional[Callable[[Callable[[], None]], None]] = None,
    ) -> SendReceipt:
        self._enter("send")
        if self.report_outcomes:
            return super().send(provider_topic_id, message, subject, recipients, deliver_with)
        message_id = self.new_message_id()
        for recipient in recipients:
            self._record(message_id, recipient, message, subject)
        return SendReceipt(message_id=message_id)

    # ---- PerEndpointProvider ----

    def new_message_id(self) -> str:
        return str(uuid.uuid4())

    def deliver_to(
        self,
        provider_subscription_id: str,
        message_id: str,
        message: str,
        subject: Optional[str],
    ) -> None:
        with self._lock:
            target = self._endpoints.get(provider_subscription_id)
        if target is None:
            raise ProviderError(f"unknown endpoint subscription {provider_subscription_id}")
        delay = self.slow_endpoints.get(target[1])
        if delay:
            time.sleep(delay)
        if target[1] in self.failing_endpoints:
            raise ProviderError(f"delivery to {target[1]} failed", retryable=True)
        self._record(message_id, provider_subscription_id, message, subject)

    def _record(
        self, message_id: str, provider_subscription_id: str, message: str, subject: Optional[str]
    ) -> None:
        with self._lock:
            provider_topic_id, endpoint = self._endpoints.get(
                provider_subscription_id, ("", "")
            )
            self.outbox.append(
                SentMessage(
                    message_id=message_id,
                    provider_topic_id=provider_topic_id,
                    provider_subscription_id=provider_subscription_id,
                    endpoint=endpoint,
                    message=message,
                    subject=subject,
                )
            )

    # ---- inspection helpers ----

    def confirmation_token(self, provider_topic_id: str, endpoint: str) -> Optional[str]:
        """The token the provider "emailed" to ``endpoint``."""
        with self._lock:
            return self._tokens.get((provider_topic_id, endpoint))

    def delivered_to(self, endpoint: str) -> List[SentMessage]:
        with self._lock:
            return [m for m in self.outbox if m.endpoint == endpoint]

    def live_registrations(self, endpoint: Optional[str] = None) -> List[str]:
        """Provider subscription ids currently registered (optionally for one endpoint)."""
        with self._lock:
            return [
                sub_id
                for sub_id, (_, registered) in self._endpoints.items()
                if endpoint is None or registered == endpoint
            ]
