"""Abstract Delivery Provider capability consumed by the core."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, Optional, Sequence

from notifygate.observability import get_logger


class ProviderError(Exception):
    """Raised by providers. ``retryable`` separates transient from permanent failures."""

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ProviderUnavailable(ProviderError):
    """The provider could not be reached; nothing was attempted."""

    def __init__(self, message: str = "provider unavailable") -> None:
        super().__init__(message, retryable=True)


class ProviderTimeout(ProviderError):
    def __init__(self, message: str = "provider call timed out") -> None:
        super().__init__(message, retryable=True)


@dataclass(frozen=True)
class EndpointRegistration:
    """Provider acknowledgment of a registered endpoint.

    The provider delivers ``confirmation_token`` to the endpoint owner (e.g. as a
    link in a confirmation email); the owner presents it back through confirm.
    """

    provider_subscription_id: str
    confirmation_token: str


@dataclass(frozen=True)
class EndpointOutcome:
    delivered: bool
    error: Optional[ProviderError] = None


@dataclass(frozen=True)
class SendReceipt:
    """Result of one logical send.

    ``outcomes`` is keyed by provider subscription id. ``None`` means the
    provider fanned out itself and accepted the message for every recipient.
    """

    message_id: str
    outcomes: Optional[Dict[str, EndpointOutcome]] = None


class DeliveryProvider(ABC):
    """Topic / endpoint / send primitives of an external delivery system."""

    name = "provider"
    # True when send reports one outcome per recipient and accepts deliver_with
    per_endpoint = False

    def __init__(self) -> None:
        self._logger = get_logger(f"notifygate.provider.{self.name}")

    @abstractmethod
    def create_topic(self, name: str) -> str:
        """Create (or look up) the provider-side topic and return its id."""

    @abstractmethod
    def register_endpoint(
        self, provider_topic_id: str, endpoint: str, protocol: str
    ) -> EndpointRegistration:
        """Attach an endpoint; the provider starts its confirmation flow."""

    @abstractmethod
    def deregister_endpoint(self, provider_subscription_id: str) -> None:
        pass

    @abstractmethod
    def send(
        self,
        provider_topic_id: str,
        message: str,
        subject: Optional[str],
        recipients: Sequence[str],
    ) -> SendReceipt:
        """Send one message to ``recipients`` (provider subscription ids)."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


class PerEndpointProvider(DeliveryProvider):
    """Base for providers whose delivery API addresses one endpoint at a time.

    ``send`` loops over recipients and records each failure as an outcome so
    that one bad endpoint never stops delivery to the rest. ``deliver_with``
    wraps each single delivery (the publisher passes its deadline runner), so a
    slow endpoint costs one TIMEOUT outcome instead of the whole send.
    """

    per_endpoint = True

    @abstractmethod
    def new_message_id(self) -> str:
        pass

    @abstractmethod
    def deliver_to(
        self,
        provider_subscription_id: str,
        message_id: str,
        message: str,
        subject: Optional[str],
    ) -> None:
        """Deliver to a single endpoint; raise ProviderError on failure."""

    def send(
        self,
        provider_topic_id: str,
        message: str,
        subject: Optional[str],
        recipients: Sequence[str],
        deliver_with: Optional[Callable[[Callable[[], None]], None]] = None,
    ) -> SendReceipt:
        run = deliver_with or (lambda fn: fn())
        message_id = self.new_message_id()
        outcomes: Dict[str, EndpointOutcome] = {}
        for recipient in recipients:
            try:
                run(partial(self.deliver_to, recipient, message_id, message, subject))
                outcomes[recipient] = EndpointOutcome(delivered=True)
            except ProviderError as e:
                if isinstance(e, ProviderUnavailable) and not outcomes:
                    raise
                self._logger.warning(
                    "endpoint_delivery_failed",
                    extra={
                        "provider_topic_id": provider_topic_id,
                        "recipient": recipient,
                        "message_id": message_id,
                        "error": str(e),
                    },
                )
                outcomes[recipient] = EndpointOutcome(delivered=False, error=e)
        return SendReceipt(message_id=message_id, outcomes=outcomes)
