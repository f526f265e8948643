"""Test helpers that play the subscriber's side of the confirmation flow."""


def confirm_token(gateway, provider, subscription_id):
    """Read the token the provider sent to the subscriber's endpoint."""
    sub = gateway.get_subscription(subscription_id)
    topic = gateway.topics.get(sub.topic_id)
    return provider.confirmation_token(topic.provider_topic_id, sub.endpoint)


def subscribe_confirmed(gateway, provider, topic_id, email):
    subscription_id = gateway.subscribe_email(email, topic_id)
    gateway.confirm(subscription_id, confirm_token(gateway, provider, subscription_id))
    return subscription_id
