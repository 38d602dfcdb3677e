"""Observability layer - logging, metrics, and tracing."""

from src.observability.logging import setup_logging
from src.observability.metrics import MetricsCollector
from src.observability.tracing import get_tracer, setup_tracing

__all__ = ["setup_logging", "MetricsCollector", "setup_tracing", "get_tracer"]
