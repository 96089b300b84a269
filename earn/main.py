"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from earn.config import settings
from earn.errors import EarnError
from earn.utils.logging import setup_logging
from earn.api import positions, system

logger = logging.getLogger(__name__)


def create_app(
    engine=None,
    collaborators=None,
    clock=None,
    run_scheduler: bool = True,
) -> FastAPI:
    """Build the app; tests pass their own engine, collaborators and clock."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        setup_logging()

        from earn.database import create_db_and_tables, engine as default_engine
        from earn.engine.watcher import DepositWatcher
        from earn.services.orchestrator import Orchestrator
        from earn.services.providers import build_collaborators
        from earn.utils.clock import utcnow

        db_engine = engine if engine is not None else default_engine
        create_db_and_tables(db_engine)

        components = collaborators or build_collaborators(settings)
        orchestrator = Orchestrator(components, engine=db_engine, clock=clock or utcnow)
        watcher = DepositWatcher(orchestrator)
        app.state.engine = db_engine
        app.state.orchestrator = orchestrator
        app.state.watcher = watcher

        if run_scheduler:
            from earn.engine.scheduler import start_scheduler
            start_scheduler(watcher)

        # Start Telegram bot if configured
        telegram_bot = None
        if settings.telegram_bot_token:
            from earn.services.notifier import init_bot
            telegram_bot = init_bot(db_engine)
            await telegram_bot.start()

        yield

        if telegram_bot:
            await telegram_bot.stop()
        if run_scheduler:
            from earn.engine.scheduler import stop_scheduler
            stop_scheduler()
        if collaborators is None:
            await components.close()

    app = FastAPI(
        title="Earn Service",
        description="Zcash to NEAR bridge-and-earn position service",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(EarnError)
    async def earn_error_handler(request: Request, exc: EarnError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error": type(exc).__name__},
        )

    # Mount routers
    app.include_router(positions.router)
    app.include_router(system.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("earn.main:app", host="0.0.0.0", port=8000)
