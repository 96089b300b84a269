"""WatcherLog model: per-position log of watcher and orchestrator events."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class WatcherLog(SQLModel, table=True):
    __tablename__ = "watcher_log"

    id: int | None = Field(default=None, primary_key=True)
    position_id: str = Field(index=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: str  # "success", "error", "skipped"
    action: str | None = None  # "deposit_detected", "finalize_failed", "timeout", ...
    message: str | None = None
    details: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
