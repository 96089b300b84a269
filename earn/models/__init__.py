"""Database models."""

from earn.models.position import Position
from earn.models.watcher_log import WatcherLog

__all__ = [
    "Position",
    "WatcherLog",
]
