"""Process-wide settings read once from the environment (and .env) at startup."""

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from notifygate.retry import RetryPolicy
from notifygate.validation import DEFAULT_MAX_MESSAGE_BYTES

DEFAULT_PENDING_TTL_SEC = 3 * 24 * 3600
DEFAULT_SWEEP_INTERVAL_SEC = 60.0
DEFAULT_PROVIDER_TIMEOUT_SEC = 10.0
DEFAULT_PROVIDER_MAX_ATTEMPTS = 3
DEFAULT_PROVIDER_BACKOFF_SEC = 0.2
DEFAULT_PROVIDER_WORKERS = 16


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    try:
        return float(env.get(name, default))
    except (ValueError, TypeError):
        return default


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(env.get(name, default))
    except (ValueError, TypeError):
        return default


@dataclass(frozen=True)
class Settings:
    api_key: Optional[str] = None
    default_topic: Optional[str] = None
    pending_ttl_sec: float = DEFAULT_PENDING_TTL_SEC
    sweep_interval_sec: float = DEFAULT_SWEEP_INTERVAL_SEC
    provider_timeout_sec: float = DEFAULT_PROVIDER_TIMEOUT_SEC
    provider_max_attempts: int = DEFAULT_PROVIDER_MAX_ATTEMPTS
    provider_backoff_sec: float = DEFAULT_PROVIDER_BACKOFF_SEC
    provider_workers: int = DEFAULT_PROVIDER_WORKERS
    max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from ``env`` (defaults to os.environ); bad numbers fall back to defaults."""
        env = os.environ if env is None else env
        return cls(
            api_key=(env.get("API_KEY") or "").strip() or None,
            default_topic=(env.get("NOTIFYGATE_DEFAULT_TOPIC") or "").strip() or None,
            pending_ttl_sec=_float(env, "NOTIFYGATE_PENDING_TTL_SEC", DEFAULT_PENDING_TTL_SEC),
            sweep_interval_sec=_float(
                env, "NOTIFYGATE_SWEEP_INTERVAL_SEC", DEFAULT_SWEEP_INTERVAL_SEC
            ),
            provider_timeout_sec=_float(
                env, "NOTIFYGATE_PROVIDER_TIMEOUT_SEC", DEFAULT_PROVIDER_TIMEOUT_SEC
            ),
            provider_max_attempts=max(
                1, _int(env, "NOTIFYGATE_PROVIDER_MAX_ATTEMPTS", DEFAULT_PROVIDER_MAX_ATTEMPTS)
            ),
            provider_backoff_sec=_float(
                env, "NOTIFYGATE_PROVIDER_BACKOFF_SEC", DEFAULT_PROVIDER_BACKOFF_SEC
            ),
            provider_workers=max(
                1, _int(env, "NOTIFYGATE_PROVIDER_WORKERS", DEFAULT_PROVIDER_WORKERS)
            ),
            max_message_bytes=_int(
                env, "NOTIFYGATE_MAX_MESSAGE_BYTES", DEFAULT_MAX_MESSAGE_BYTES
            ),
        )

    @property
    def pending_ttl(self) -> timedelta:
        return timedelta(seconds=self.pending_ttl_sec)

    def retry_policy(self) -> RetryPolicy:
        timeout = self.provider_timeout_sec if self.provider_timeout_sec > 0 else None
        return RetryPolicy(
            max_attempts=self.provider_max_attempts,
            backoff=self.provider_backoff_sec,
            timeout=timeout,
        )
