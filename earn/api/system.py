"""System API: health check, scheduler and watcher status, watcher logs, manual sweeps."""

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from earn.api.deps import get_session, get_watcher, require_admin
from earn.engine.watcher import DepositWatcher
from earn.models.watcher_log import WatcherLog

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/scheduler")
def scheduler_status():
    """Current scheduler state with job details."""
    from earn.engine.scheduler import get_scheduler_status
    return get_scheduler_status()


@router.get("/watcher")
def watcher_status(watcher: DepositWatcher = Depends(get_watcher)):
    return watcher.get_stats()


@router.post("/watcher/check/{position_id}", dependencies=[Depends(require_admin)])
async def check_position(position_id: str, watcher: DepositWatcher = Depends(get_watcher)):
    """Run the watcher for one position now."""
    return await watcher.check_position(position_id)


@router.post("/watcher/sweep", dependencies=[Depends(require_admin)])
async def trigger_sweep(watcher: DepositWatcher = Depends(get_watcher)):
    counters = await watcher.sweep()
    if counters is None:
        return {"status": "skipped", "message": "A sweep is already running"}
    return {"status": "ok", **counters}


@router.get("/logs", dependencies=[Depends(require_admin)])
def watcher_logs(
    position_id: str | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
    session: Session = Depends(get_session),
):
    stmt = select(WatcherLog).order_by(WatcherLog.timestamp.desc(), WatcherLog.id.desc())
    if position_id is not None:
        stmt = stmt.where(WatcherLog.position_id == position_id)
    if status is not None:
        stmt = stmt.where(WatcherLog.status == status)
    stmt = stmt.offset(offset).limit(limit)
    return session.exec(stmt).all()
