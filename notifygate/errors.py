"""Error taxonomy shared by the core and the request front end."""

from enum import Enum
from typing import Any, Dict


class ErrorKind(str, Enum):
    """Stable, caller-facing error kinds."""

    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    DEPENDENCY_FAILURE = "DEPENDENCY_FAILURE"
    TIMEOUT = "TIMEOUT"


class GatewayError(Exception):
    """Base error: a kind, a human-readable detail and whether a retry may help."""

    kind: ErrorKind = ErrorKind.DEPENDENCY_FAILURE
    default_retryable = False

    def __init__(self, detail: str, retryable: bool | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.retryable = self.default_retryable if retryable is None else retryable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.kind.value,
            "message": self.detail,
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.detail!r}, retryable={self.retryable})"


class InvalidInput(GatewayError):
    """Malformed name, endpoint, message or token. Never retried."""

    kind = ErrorKind.INVALID_INPUT


class NotFound(GatewayError):
    kind = ErrorKind.NOT_FOUND


class Conflict(GatewayError):
    """A state-transition precondition was violated."""

    kind = ErrorKind.CONFLICT


class DependencyFailure(GatewayError):
    """The delivery provider returned an error."""

    kind = ErrorKind.DEPENDENCY_FAILURE


class Timeout(DependencyFailure):
    """A provider call exceeded its deadline."""

    kind = ErrorKind.TIMEOUT
    default_retryable = True
