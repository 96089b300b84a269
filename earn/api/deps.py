"""Shared API dependencies."""

import secrets

from fastapi import Header, HTTPException, Request, status
from sqlmodel import Session

from earn.config import settings
from earn.engine.watcher import DepositWatcher
from earn.services.orchestrator import Orchestrator


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def get_watcher(request: Request) -> DepositWatcher:
    return request.app.state.watcher


def get_session(request: Request) -> Session:
    """Dependency that yields a database session on the app's engine."""
    with Session(request.app.state.engine) as session:
        yield session


def require_admin(x_admin_key: str | None = Header(default=None)):
    """Validate the shared admin key sent in ``X-Admin-Key``."""
    if not x_admin_key or not secrets.compare_digest(x_admin_key, settings.admin_api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin key",
        )
