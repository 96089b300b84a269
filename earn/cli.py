"""CLI tool for operator tasks.

Usage:
    python -m earn.cli sweep
    python -m earn.cli show <position_id>
    python -m earn.cli watch-status
"""

import asyncio
import json
import sys

from sqlmodel import Session, select

from earn.database import engine, create_db_and_tables
from earn.errors import PositionNotFound
from earn.models.position import Position
from earn.models.watcher_log import WatcherLog
from earn.utils.constants import BRIDGING_TO_NEAR, BRIDGING_TO_ZCASH, PENDING_DEPOSIT
from earn.utils.logging import setup_logging


def _build_watcher():
    from earn.engine.watcher import DepositWatcher
    from earn.services.orchestrator import Orchestrator
    from earn.services.providers import build_collaborators

    collaborators = build_collaborators()
    return DepositWatcher(Orchestrator(collaborators, engine=engine)), collaborators


def sweep():
    """Run one watcher sweep against the configured collaborators."""
    setup_logging()
    create_db_and_tables()
    watcher, collaborators = _build_watcher()

    async def _run():
        try:
            return await watcher.sweep()
        finally:
            await collaborators.close()

    counters = asyncio.run(_run())
    for key, value in (counters or {}).items():
        print(f"{key:>22}: {value}")


def show(position_id: str):
    """Print a position, its history and its latest watcher log entries."""
    create_db_and_tables()
    with Session(engine) as session:
        position = session.exec(
            select(Position).where(Position.position_id == position_id)
        ).first()
        if position is None:
            raise PositionNotFound(f"Position {position_id} not found")
        logs = session.exec(
            select(WatcherLog)
            .where(WatcherLog.position_id == position_id)
            .order_by(WatcherLog.timestamp.desc())
            .limit(10)
        ).all()

        print(f"{position.position_id}  [{position.status}]")
        print(f"  owner:     {position.owner_address}")
        print(f"  deposited: {position.deposited_amount}  bridged: {position.bridged_amount}")
        print(f"  value:     {position.current_value}  interest: {position.accrued_interest}  apy: {position.current_apy}%")
        print(f"  bridge:    {position.bridge_deposit_address}")
        print("\nHistory:")
        for entry in position.status_history or []:
            ref = f"  tx={entry['tx_ref']}" if entry.get("tx_ref") else ""
            print(f"  {entry['timestamp']}  {entry['status']:<18} {entry.get('note', '')}{ref}")
        if position.pending_watcher_state:
            print("\nWatcher state:")
            print(json.dumps(position.pending_watcher_state, indent=2, default=str))
        if logs:
            print("\nRecent watcher log:")
            for log in logs:
                print(f"  {log.timestamp}  {log.status:<8} {log.action or '':<22} {log.message or ''}")


def watch_status():
    """List positions the watcher is still waiting on."""
    create_db_and_tables()
    with Session(engine) as session:
        positions = session.exec(
            select(Position)
            .where(Position.status.in_([PENDING_DEPOSIT, BRIDGING_TO_NEAR, BRIDGING_TO_ZCASH]))  # type: ignore[attr-defined]
            .order_by(Position.created_at)
        ).all()

    if not positions:
        print("Nothing pending.")
        return
    for pos in positions:
        state = pos.pending_watcher_state or {}
        error = f"  last_error={state['last_error']}" if state.get("last_error") else ""
        print(
            f"{pos.position_id}  {pos.status:<18} kind={state.get('kind', '-'):<10} "
            f"checks={state.get('check_count', 0):<4} last={state.get('last_checked_at') or '-'}{error}"
        )


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m earn.cli <command>")
        print("Commands: sweep, show <position_id>, watch-status")
        sys.exit(1)

    command = sys.argv[1]
    if command == "sweep":
        sweep()
    elif command == "show":
        if len(sys.argv) < 3:
            print("Usage: python -m earn.cli show <position_id>")
            sys.exit(1)
        try:
            show(sys.argv[2])
        except PositionNotFound as e:
            print(e.message)
            sys.exit(1)
    elif command == "watch-status":
        watch_status()
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
