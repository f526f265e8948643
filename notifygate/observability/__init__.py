"""Observability: structured logging and metrics for the gateway."""

from notifygate.observability.logger import get_logger
from notifygate.observability.metrics import Metrics

__all__ = ["get_logger", "Metrics"]
