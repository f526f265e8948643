"""Response shapes and error mapping for the HTTP front end."""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List

from notifygate.errors import ErrorKind, GatewayError

# Error kind -> HTTP status
HTTP_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.DEPENDENCY_FAILURE: 502,
    ErrorKind.TIMEOUT: 504,
}

ERROR_UNAUTHORIZED = "UNAUTHORIZED"


def ts() -> str:
    """Current UTC timestamp in ISO 8601 (e.g. 2025-08-25T10:00:00Z)."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def error_body(code: str, message: str, retryable: bool = False) -> Dict[str, Any]:
    return {
        "error": {"code": code, "message": message, "retryable": retryable},
        "ts": ts(),
    }


def gateway_error_response(error: GatewayError) -> tuple[int, Dict[str, Any]]:
    """(status, body) for a GatewayError."""
    status = HTTP_STATUS.get(error.kind, 500)
    return status, error_body(error.kind.value, error.detail, error.retryable)


# ---- Topics ----

@dataclass
class TopicCreatedResponse:
    """Response for POST /topics."""
    topic_id: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def topics_list_response(topics: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Response for GET /topics."""
    return {"topics": topics}


# ---- Subscriptions ----

@dataclass
class SubscribeResponse:
    """Response for POST /subscribe."""
    subscription_id: str
    topic_id: str
    email: str
    state: str
    message: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = (
                f"Successfully subscribed {self.email}. "
                "Please check your email to confirm subscription."
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class UnsubscribeResponse:
    subscription_id: str
    removed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "unsubscribed" if self.removed else "not_subscribed",
            "subscription_id": self.subscription_id,
        }


# ---- Health / stats ----

def health_response(health: Dict[str, Any]) -> Dict[str, Any]:
    return {"status": "ok", **health}


def stats_response(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    """Response for GET /stats: { counters, gauges }."""
    return {"counters": snapshot.get("counters", {}), "gauges": snapshot.get("gauges", {})}
