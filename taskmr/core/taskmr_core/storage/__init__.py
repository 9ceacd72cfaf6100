"""Persistence backends for taskmr."""

from .sqlite import SqliteBackend

__all__ = [
    "SqliteBackend",
]
