"""In-memory topic registry: idempotent creation-by-name, append-only."""

import threading
from typing import Callable, Dict, List, Optional

from notifygate.errors import NotFound
from notifygate.locks import SingleFlight
from notifygate.models import Topic, new_id, utc_now
from notifygate.observability import get_logger
from notifygate.provider import DeliveryProvider
from notifygate.retry import ProviderCaller
from notifygate.validation import validate_topic_name


class TopicRegistry:
    """Owns Topic records. Only the first create for a name reaches the provider."""

    def __init__(
        self,
        provider: DeliveryProvider,
        caller: ProviderCaller | None = None,
        clock: Callable = utc_now,
    ) -> None:
        self._provider = provider
        self._caller = caller or ProviderCaller()
        self._clock = clock
        self._topics: Dict[str, Topic] = {}
        self._by_name: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._flights = SingleFlight()
        self._logger = get_logger("notifygate.registry")

    def create_topic(self, name: str) -> str:
        """
        Return the id of topic ``name``, creating it with the provider if new.
        Raises InvalidInput, DependencyFailure or Timeout; on failure nothing is recorded.
        """
        name = validate_topic_name(name)
        existing = self._lookup(name)
        if existing is not None:
            return existing
        return self._flights.do(name, lambda: self._create(name))

    def _create(self, name: str) -> str:
        # another leader may have finished between the lookup and taking the flight
        existing = self._lookup(name)
        if existing is not None:
            return existing
        provider_topic_id = self._caller.call(
            "create_topic", lambda: self._provider.create_topic(name)
        )
        topic = Topic(
            id=new_id("top"),
            name=name,
            provider_topic_id=provider_topic_id,
            created_at=self._clock(),
        )
        with self._lock:
            if name in self._by_name:
                return self._by_name[name]
            self._topics[topic.id] = topic
            self._by_name[name] = topic.id
        self._logger.info(
            "topic_created",
            extra={"topic": name, "topic_id": topic.id, "provider_topic_id": provider_topic_id},
        )
        return topic.id

    def _lookup(self, name: str) -> Optional[str]:
        with self._lock:
            return self._by_name.get(name)

    def resolve(self, name: str) -> str:
        topic_id = self._lookup(name)
        if topic_id is None:
            raise NotFound(f"topic {name!r} not found")
        return topic_id

    def get(self, topic_id: str) -> Topic:
        with self._lock:
            topic = self._topics.get(topic_id)
        if topic is None:
            raise NotFound(f"topic {topic_id!r} not found")
        return topic

    def exists(self, topic_id: str) -> bool:
        with self._lock:
            return topic_id in self._topics

    def list_topics(self) -> List[Topic]:
        """Topics in creation order."""
        with self._lock:
            return list(self._topics.values())

    def topic_count(self) -> int:
        with self._lock:
            return len(self._topics)
