"""SQLModel database engine and session management."""

import logging

from sqlalchemy import inspect
from sqlmodel import SQLModel, create_engine

from earn.config import settings

logger = logging.getLogger(__name__)

# SQLite needs check_same_thread=False; PostgreSQL does not
connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args=connect_args,
)


def _run_migrations(bind=None):
    """Run lightweight schema migrations for indexes added after the first release."""
    from sqlalchemy import text

    bind = bind or engine
    inspector = inspect(bind)

    if "earn_position" not in inspector.get_table_names():
        return

    # Owner listings filter on (owner_address, status)
    existing_indexes = inspector.get_indexes("earn_position")
    has_owner_status_idx = any(
        idx["name"] == "ix_earn_position_owner_status" for idx in existing_indexes
    )
    if not has_owner_status_idx:
        logger.info("Migrating: creating ix_earn_position_owner_status")
        with bind.connect() as conn:
            conn.execute(text(
                "CREATE INDEX ix_earn_position_owner_status "
                "ON earn_position (owner_address, status)"
            ))
            conn.commit()


def create_db_and_tables(bind=None):
    """Create all tables. Called on startup."""
    import earn.models  # noqa: F401  registers tables on SQLModel.metadata

    bind = bind or engine
    SQLModel.metadata.create_all(bind)
    _run_migrations(bind)
