"""Versioned schema setup for the job database.

Each entry in ``MIGRATIONS`` upgrades the schema from ``version - 1`` to
``version``; the applied version is kept in the single-row ``schema_version``
table. Workflow code never calls into this module, only application startup.
"""

from __future__ import annotations

from collections.abc import Callable

from sqlalchemy import create_engine, inspect, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from photo_converter.core.errors import StoreError
from photo_converter.core.logging import get_logger

from .models import Base, ConversionJobModel, SchemaVersionModel

logger = get_logger(__name__)

MigrationFn = Callable[[Engine], None]


def _upgrade_to_1(engine: Engine) -> None:
    Base.metadata.create_all(engine, tables=[ConversionJobModel.__table__])


def _upgrade_to_2(engine: Engine) -> None:
    # v1 tables were created without the WEBP fallback flag
    columns = {column["name"] for column in inspect(engine).get_columns(ConversionJobModel.__tablename__)}
    if "fallback_used" in columns:
        return
    with engine.begin() as conn:
        conn.execute(text("ALTER TABLE conversion_job ADD COLUMN fallback_used BOOLEAN NOT NULL DEFAULT FALSE"))


MIGRATIONS: dict[int, MigrationFn] = {1: _upgrade_to_1, 2: _upgrade_to_2}


def get_latest_version() -> int:
    return max(MIGRATIONS) if MIGRATIONS else 0


def get_current_version(session: Session) -> int:
    row = session.scalar(select(SchemaVersionModel).where(SchemaVersionModel.id == 1))
    return row.version if row is not None else 0


def migrate(engine: Engine) -> int:
    """Bring the database up to the latest schema version and return it."""

    Base.metadata.create_all(engine, tables=[SchemaVersionModel.__table__])
    factory = sessionmaker(bind=engine)
    with factory() as session:
        current = get_current_version(session)
    latest = get_latest_version()
    if current > latest:
        raise StoreError(f"database schema v{current} is newer than supported v{latest}")

    for version in range(current + 1, latest + 1):
        MIGRATIONS[version](engine)
        with factory() as session:
            row = session.get(SchemaVersionModel, 1)
            if row is None:
                session.add(SchemaVersionModel(id=1, version=version))
            else:
                row.version = version
            session.commit()
        logger.info("job_schema_migrated", version=version)
    return latest


def create_session_factory(database_url: str) -> sessionmaker[Session]:
    """Create an engine for ``database_url``, migrate it and return a session factory."""

    if database_url.startswith("sqlite") and ":memory:" in database_url:
        # one shared connection, otherwise every checkout sees an empty database
        engine = create_engine(
            database_url,
            future=True,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(database_url, future=True)
    migrate(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)
