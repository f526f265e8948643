"""Publisher: fan a message out to the confirmed subscribers of a topic."""

from typing import List, Optional

from notifygate.errors import ErrorKind
from notifygate.models import DeliveryOutcome, PublishResult
from notifygate.observability import get_logger
from notifygate.provider import DeliveryProvider, EndpointOutcome, ProviderTimeout
from notifygate.registry import TopicRegistry
from notifygate.retry import ProviderCaller, only_unavailable
from notifygate.subscriptions import SubscriptionManager


def _error_kind(outcome: EndpointOutcome) -> ErrorKind:
    if isinstance(outcome.error, ProviderTimeout):
        return ErrorKind.TIMEOUT
    return ErrorKind.DEPENDENCY_FAILURE


class Publisher:
    """Stateless; reads the confirmed snapshot at publish time.

    Per-subscriber failures are data in the PublishResult, never exceptions.
    The call raises only if the topic does not resolve or the provider cannot
    be reached before anything is sent.
    """

    def __init__(
        self,
        topics: TopicRegistry,
        subscriptions: SubscriptionManager,
        provider: DeliveryProvider,
        caller: ProviderCaller | None = None,
    ) -> None:
        self._topics = topics
        self._subscriptions = subscriptions
        self._provider = provider
        self._caller = caller or ProviderCaller()
        self._logger = get_logger("notifygate.publisher")

    def publish(self, topic_id: str, message: str, subject: Optional[str] = None) -> PublishResult:
        topic = self._topics.get(topic_id)
        confirmed = self._subscriptions.list_confirmed(topic_id)
        if not confirmed:
            self._logger.info("publish_no_subscribers", extra={"topic_id": topic_id})
            return PublishResult(message_id=None, topic_id=topic_id)

        recipients = [s.provider_subscription_id for s in confirmed]
        # send is not idempotent: retry only when the provider was never reached
        if getattr(self._provider, "per_endpoint", False):
            # each delivery gets its own deadline; a slow endpoint becomes a TIMEOUT outcome
            receipt = self._caller.call(
                "send",
                lambda: self._provider.send(
                    topic.provider_topic_id,
                    message,
                    subject,
                    recipients,
                    deliver_with=self._caller.run_with_deadline,
                ),
                retry_if=only_unavailable,
                deadline=False,
            )
        else:
            receipt = self._caller.call(
                "send",
                lambda: self._provider.send(topic.provider_topic_id, message, subject, recipients),
                retry_if=only_unavailable,
            )

        outcomes: List[DeliveryOutcome] = []
        for sub in confirmed:
            if receipt.outcomes is None:
                outcomes.append(DeliveryOutcome(subscription_id=sub.id, delivered=True))
                continue
            result = receipt.outcomes.get(sub.provider_subscription_id)
            if result is None:
                outcomes.append(
                    DeliveryOutcome(
                        subscription_id=sub.id,
                        delivered=False,
                        error=ErrorKind.DEPENDENCY_FAILURE,
                    )
                )
            elif result.delivered:
                outcomes.append(DeliveryOutcome(subscription_id=sub.id, delivered=True))
            else:
                outcomes.append(
                    DeliveryOutcome(
                        subscription_id=sub.id, delivered=False, error=_error_kind(result)
                    )
                )

        publish_result = PublishResult(
            message_id=receipt.message_id, topic_id=topic_id, outcomes=outcomes
        )
        self._logger.info(
            "published",
            extra={
                "topic_id": topic_id,
                "message_id": receipt.message_id,
                "subscriber_count": len(outcomes),
                "delivered": publish_result.delivered_count,
                "failed": publish_result.failed_count,
            },
        )
        for outcome in outcomes:
            if not outcome.delivered:
                self._logger.warning(
                    "delivery_failed",
                    extra={
                        "topic_id": topic_id,
                        "message_id": receipt.message_id,
                        "subscription_id": outcome.subscription_id,
                        "error": outcome.error.value if outcome.error else None,
                    },
                )
        return publish_result
