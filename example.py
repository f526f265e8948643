"""Example: topic, email subscription, confirmation and publish against the in-memory provider."""

import logging

from notifygate import Gateway, InMemoryProvider, Settings

logging.basicConfig(level=logging.INFO)


def main() -> None:
    provider = InMemoryProvider()
    gateway = Gateway(provider, Settings(default_topic="alerts"))

    topic_id = gateway.create_topic("alerts")
    subscription_id = gateway.subscribe_email("a@example.com", topic_id)

    # the provider "emailed" this token to a@example.com
    topic = gateway.topics.get(topic_id)
    token = provider.confirmation_token(topic.provider_topic_id, "a@example.com")
    gateway.confirm(subscription_id, token)

    gateway.subscribe_email("b@example.com")  # default topic, never confirmed

    result = gateway.publish_message("Disk usage above 90%", "hi")
    print(result.to_dict())
    print(gateway.stats())

    gateway.unsubscribe(subscription_id)
    gateway.unsubscribe(subscription_id, missing_ok=True)


if __name__ == "__main__":
    main()
