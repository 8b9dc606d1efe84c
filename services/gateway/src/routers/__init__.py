"""Gateway API Routers."""

from . import automations, events, health

__all__ = ["health", "automations", "events"]
