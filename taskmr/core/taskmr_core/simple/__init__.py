"""Non-event-sourced task store."""

from .store import SimpleTaskService

__all__ = [
    "SimpleTaskService",
]
