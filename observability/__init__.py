"""Observability utilities for the entrance exam stack."""
from .logger import log_event
from .tracing import span

__all__ = ["log_event", "span"]
