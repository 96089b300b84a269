"""Per-position event log written by the watcher and the orchestrator."""

from datetime import datetime

from sqlmodel import Session

from earn.models.watcher_log import WatcherLog


def log_event(
    engine,
    position_id: str,
    status: str,
    action: str | None = None,
    message: str | None = None,
    details: dict | None = None,
    timestamp: datetime | None = None,
):
    """Write a WatcherLog entry."""
    entry = WatcherLog(
        position_id=position_id,
        status=status,
        action=action,
        message=message,
        details=details,
    )
    if timestamp is not None:
        entry.timestamp = timestamp
    with Session(engine) as session:
        session.add(entry)
        session.commit()
