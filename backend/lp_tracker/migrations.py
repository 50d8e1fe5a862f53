from __future__ import annotations

import logging

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from . import models  # noqa: F401  registers tables on Base.metadata
from .db import Base

logger = logging.getLogger(__name__)

# Columns added to `accounts` after the first deployments went live.
_ACCOUNT_COLUMNS = {
    "account_name": "VARCHAR(100)",
    "updated_at": "TIMESTAMP",
}


def _ensure_account_columns(engine: Engine) -> None:
    inspector = inspect(engine)
    try:
        columns = {column["name"] for column in inspector.get_columns("accounts")}
    except SQLAlchemyError as exc:  # pragma: no cover - defensive
        logger.error("Failed to inspect accounts table: %s", exc)
        return

    for name, ddl_type in _ACCOUNT_COLUMNS.items():
        if name in columns:
            continue
        logger.info("Adding %s column to accounts table.", name)
        try:
            with engine.begin() as connection:
                connection.execute(text(f"ALTER TABLE accounts ADD COLUMN {name} {ddl_type}"))
                if name == "updated_at":
                    connection.execute(
                        text("UPDATE accounts SET updated_at = CURRENT_TIMESTAMP WHERE updated_at IS NULL")
                    )
        except SQLAlchemyError as exc:  # pragma: no cover - defensive
            logger.error("Failed to add %s column: %s", name, exc)


# Position values the dashboard did not show are stored as NULL.
_NULLABLE_POSITION_COLUMNS = ("position_size", "apr")


def _relax_position_columns(engine: Engine) -> None:
    if engine.dialect.name != "postgresql":
        return
    inspector = inspect(engine)
    try:
        columns = {column["name"]: column for column in inspector.get_columns("positions")}
    except SQLAlchemyError as exc:  # pragma: no cover - defensive
        logger.error("Failed to inspect positions table: %s", exc)
        return

    for name in _NULLABLE_POSITION_COLUMNS:
        column = columns.get(name)
        if column is None or column["nullable"]:
            continue
        logger.info("Dropping NOT NULL from positions.%s.", name)
        try:
            with engine.begin() as connection:
                connection.execute(text(f"ALTER TABLE positions ALTER COLUMN {name} DROP NOT NULL"))
                connection.execute(text(f"ALTER TABLE positions ALTER COLUMN {name} DROP DEFAULT"))
        except SQLAlchemyError as exc:  # pragma: no cover - defensive
            logger.error("Failed to relax positions.%s: %s", name, exc)


def run_migrations(engine: Engine) -> None:
    """Execute lightweight, idempotent migrations on application start."""
    _ensure_account_columns(engine)
    _relax_position_columns(engine)


def init_database(engine: Engine) -> None:
    """Create missing tables, then patch older schemas in place."""
    logger.info("Checking database tables...")
    Base.metadata.create_all(bind=engine)
    run_migrations(engine)
    logger.info("Database tables ready.")
