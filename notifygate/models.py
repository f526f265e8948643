"""Topic, Subscription and PublishResult records."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from notifygate.errors import ErrorKind


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Opaque identifier such as ``top_3f2a...`` or ``sub_9c1d...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


class SubscriptionState(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"


@dataclass(frozen=True)
class Topic:
    """Named channel owned by the TopicRegistry. Never mutated once recorded."""

    id: str
    name: str
    provider_topic_id: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Subscription:
    """One endpoint attached to one topic, with its confirmation state."""

    id: str
    topic_id: str
    endpoint: str
    protocol: str
    provider_subscription_id: str
    confirmation_token: str = field(repr=False)
    created_at: datetime
    pending_since: datetime
    state: SubscriptionState = SubscriptionState.PENDING
    confirmed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.state in (SubscriptionState.PENDING, SubscriptionState.CONFIRMED)

    def to_dict(self) -> Dict[str, Any]:
        """Public view; the confirmation token is never exposed."""
        return {
            "id": self.id,
            "topic_id": self.topic_id,
            "endpoint": self.endpoint,
            "protocol": self.protocol,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "failure_reason": self.failure_reason,
        }


@dataclass(frozen=True)
class DeliveryOutcome:
    subscription_id: str
    delivered: bool
    error: Optional[ErrorKind] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subscription_id": self.subscription_id,
            "delivered": self.delivered,
            "error": self.error.value if self.error else None,
        }


@dataclass
class PublishResult:
    """Record of a single publish attempt. Outcomes follow subscription creation order."""

    message_id: Optional[str]
    topic_id: str
    outcomes: List[DeliveryOutcome] = field(default_factory=list)

    @property
    def delivered_count(self) -> int:
        return sum(1 for o in self.outcomes if o.delivered)

    @property
    def failed_count(self) -> int:
        return len(self.outcomes) - self.delivered_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_id": self.message_id,
            "topic_id": self.topic_id,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
