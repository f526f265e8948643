"""Input rules checked before any provider call."""

import re
from typing import Callable, Dict, Optional

from notifygate.errors import InvalidInput

TOPIC_NAME_MAX_LENGTH = 256
SUBJECT_MAX_LENGTH = 100
DEFAULT_MAX_MESSAGE_BYTES = 256 * 1024

_TOPIC_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_EMAIL_RE = re.compile(
    r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+$"
)
EMAIL_MAX_LENGTH = 254


def validate_topic_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidInput("topic name is required")
    name = name.strip()
    if len(name) > TOPIC_NAME_MAX_LENGTH:
        raise InvalidInput(f"topic name exceeds {TOPIC_NAME_MAX_LENGTH} characters")
    if not _TOPIC_NAME_RE.match(name):
        raise InvalidInput(
            "topic name may contain only letters, digits, hyphens and underscores"
        )
    return name


def validate_email(endpoint: str) -> str:
    """Return the trimmed address; local parts are case-sensitive so case is kept."""
    if not isinstance(endpoint, str) or not endpoint.strip():
        raise InvalidInput("email is required")
    endpoint = endpoint.strip()
    if len(endpoint) > EMAIL_MAX_LENGTH or ".." in endpoint or not _EMAIL_RE.match(endpoint):
        raise InvalidInput(f"invalid email address: {endpoint!r}")
    return endpoint


ENDPOINT_VALIDATORS: Dict[str, Callable[[str], str]] = {
    "email": validate_email,
}


def validate_endpoint(endpoint: str, protocol: str) -> str:
    validator = ENDPOINT_VALIDATORS.get(protocol)
    if validator is None:
        raise InvalidInput(f"unsupported protocol: {protocol!r}")
    return validator(endpoint)


def validate_message(message: str, max_bytes: int = DEFAULT_MAX_MESSAGE_BYTES) -> str:
    if not isinstance(message, str) or not message.strip():
        raise InvalidInput("message is required")
    size = len(message.encode("utf-8"))
    if size > max_bytes:
        raise InvalidInput(f"message is {size} bytes; limit is {max_bytes}")
    return message


def validate_subject(subject: Optional[str]) -> Optional[str]:
    """Subjects are optional; when given they must be one printable ASCII line."""
    if subject is None or subject == "":
        return None
    if not isinstance(subject, str):
        raise InvalidInput("subject must be a string")
    if len(subject) > SUBJECT_MAX_LENGTH:
        raise InvalidInput(f"subject exceeds {SUBJECT_MAX_LENGTH} characters")
    if not subject.isascii() or not subject.isprintable():
        raise InvalidInput("subject must be printable ASCII on a single line")
    return subject
