"""Position lifecycle rules shared by the orchestrator and the watcher."""

from datetime import datetime

from earn.errors import InvalidTransition
from earn.models.position import Position
from earn.utils.clock import as_utc
from earn.utils.constants import TRANSITIONS


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def append_history(
    position: Position,
    status: str,
    now: datetime,
    note: str | None = None,
    tx_ref: str | None = None,
) -> dict:
    """Append one entry to ``status_history``.

    Timestamps never go backwards: an entry stamped earlier than the previous
    one (clock skew between processes) takes the previous entry's time.
    """
    history = list(position.status_history or [])
    timestamp = as_utc(now)
    if history:
        previous = as_utc(history[-1].get("timestamp"))
        if previous and timestamp < previous:
            timestamp = previous

    entry = {"status": status, "timestamp": timestamp.isoformat()}
    if note:
        entry["note"] = note
    if tx_ref:
        entry["tx_ref"] = tx_ref

    # Reassign so the JSON column is flagged dirty
    position.status_history = history + [entry]
    return entry


def transition(
    position: Position,
    target: str,
    now: datetime,
    note: str | None = None,
    tx_ref: str | None = None,
):
    if not can_transition(position.status, target):
        raise InvalidTransition(
            f"Position {position.position_id} cannot move from {position.status} to {target}"
        )
    position.status = target
    position.updated_at = now
    append_history(position, target, now, note=note, tx_ref=tx_ref)
