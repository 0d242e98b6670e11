from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from photo_converter.core.errors import StoreError
from photo_converter.db.migrations import create_session_factory, get_current_version, get_latest_version, migrate
from photo_converter.db.models import SchemaVersionModel
from photo_converter.models.job import ConversionFormat, ConversionJob
from photo_converter.services.job_store import InMemoryJobStore, SqlJobStore

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_job(offset_minutes: int = 0, **overrides) -> ConversionJob:
    values = dict(
        original_image_bytes=b"original",
        converted_image_bytes=b"converted",
        format=ConversionFormat.png,
        quality=0.5,
        created_at=BASE_TIME + timedelta(minutes=offset_minutes),
        is_completed=True,
    )
    values.update(overrides)
    return ConversionJob(**values)


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        return InMemoryJobStore()
    return SqlJobStore(create_session_factory("sqlite:///:memory:"))


def test_persist_and_get_round_trip(store) -> None:
    job = make_job()

    assert store.persist(job) == job.id
    loaded = store.get(job.id)

    assert loaded == job
    assert loaded.created_at.tzinfo is not None


def test_duplicate_id_is_rejected(store) -> None:
    job = make_job()
    store.persist(job)

    with pytest.raises(StoreError):
        store.persist(job)
    assert len(store.list_jobs()) == 1


def test_jobs_are_listed_oldest_first(store) -> None:
    later = make_job(10)
    earlier = make_job(0)
    middle = make_job(5)
    for job in (later, earlier, middle):
        store.persist(job)

    assert [job.id for job in store.list_jobs()] == [earlier.id, middle.id, later.id]


def test_unknown_job_is_none(store) -> None:
    assert store.get("job_missing") is None


def test_fallback_flag_round_trips(store) -> None:
    job = make_job(format=ConversionFormat.webp, fallback_used=True)
    store.persist(job)

    loaded = store.get(job.id)

    assert loaded.fallback_used
    assert loaded.output_format is ConversionFormat.jpeg
    assert store.get(store.persist(make_job())).output_format is ConversionFormat.png


def test_completed_job_requires_output() -> None:
    with pytest.raises(ValueError):
        ConversionJob(original_image_bytes=b"x", format=ConversionFormat.jpeg, quality=0.5, is_completed=True)
    with pytest.raises(ValueError):
        ConversionJob(
            original_image_bytes=b"x",
            converted_image_bytes=b"y",
            format=ConversionFormat.jpeg,
            quality=0.5,
        )


@pytest.mark.parametrize("quality", [-0.1, 1.5])
def test_job_quality_is_bounded(quality: float) -> None:
    with pytest.raises(ValueError):
        make_job(quality=quality)


def _memory_engine():
    return create_engine(
        "sqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


def test_migrate_records_latest_version() -> None:
    engine = _memory_engine()

    assert migrate(engine) == get_latest_version()
    # a second run is a no-op
    assert migrate(engine) == get_latest_version()
    with sessionmaker(bind=engine)() as session:
        assert get_current_version(session) == get_latest_version()


def test_migrate_refuses_newer_schema() -> None:
    engine = _memory_engine()
    migrate(engine)
    with sessionmaker(bind=engine)() as session:
        session.get(SchemaVersionModel, 1).version = get_latest_version() + 1
        session.commit()

    with pytest.raises(StoreError):
        migrate(engine)


def test_migrate_adds_fallback_column_to_a_v1_database() -> None:
    engine = _memory_engine()
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE schema_version (id INTEGER PRIMARY KEY, version INTEGER NOT NULL)"))
        conn.execute(text("INSERT INTO schema_version (id, version) VALUES (1, 1)"))
        conn.execute(
            text(
                "CREATE TABLE conversion_job ("
                "id VARCHAR(64) PRIMARY KEY, format VARCHAR(8) NOT NULL, quality FLOAT NOT NULL, "
                "created_at DATETIME NOT NULL, is_completed BOOLEAN NOT NULL, "
                "original_image BLOB NOT NULL, converted_image BLOB)"
            )
        )
        conn.execute(
            text(
                "INSERT INTO conversion_job VALUES "
                "('job_v1', 'PNG', 0.5, '2024-05-01 12:00:00.000000', 1, x'01', x'02')"
            )
        )

    assert migrate(engine) == 2

    store = SqlJobStore(sessionmaker(bind=engine, expire_on_commit=False))
    loaded = store.get("job_v1")
    assert loaded.fallback_used is False
    assert loaded.converted_image_bytes == b"\x02"
    store.persist(make_job(10, format=ConversionFormat.webp, fallback_used=True))
    assert [job.fallback_used for job in store.list_jobs()] == [False, True]
