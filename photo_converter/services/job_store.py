"""Append-only stores for completed conversion jobs."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timezone
from threading import Lock
from typing import Dict, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from photo_converter.core.errors import StoreError
from photo_converter.core.logging import get_logger
from photo_converter.db.models import ConversionJobModel
from photo_converter.models.job import ConversionFormat, ConversionJob

logger = get_logger(__name__)


class JobStore(Protocol):
    """Persistence gateway for completed jobs; there is no update or delete."""

    def persist(self, job: ConversionJob) -> str:
        """Durably write ``job`` and return its id, or raise :class:`StoreError`."""

    def get(self, job_id: str) -> Optional[ConversionJob]:
        """Return a stored job by id."""

    def list_jobs(self) -> List[ConversionJob]:
        """Return every stored job ordered by ``created_at``."""


class InMemoryJobStore:
    """Thread-safe job registry used in tests and when no database is configured."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._jobs: Dict[str, ConversionJob] = {}

    def persist(self, job: ConversionJob) -> str:
        with self._lock:
            if job.id in self._jobs:
                raise StoreError(f"Job {job.id} already stored")
            # frozen model, but copy so no caller shares the stored instance
            self._jobs[job.id] = job.model_copy()
        return job.id

    def get(self, job_id: str) -> Optional[ConversionJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def list_jobs(self) -> List[ConversionJob]:
        with self._lock:
            return sorted(self._jobs.values(), key=lambda job: job.created_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


class SqlJobStore:
    """Job store on top of a SQLAlchemy session factory.

    Every ``persist`` call runs in its own transaction, so a record is either
    written with both image blobs or not at all.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def persist(self, job: ConversionJob) -> str:
        try:
            with self._session_factory() as session:
                with session.begin():
                    if session.get(ConversionJobModel, job.id) is not None:
                        raise StoreError(f"Job {job.id} already stored")
                    session.add(
                        ConversionJobModel(
                            id=job.id,
                            format=job.format.value,
                            quality=job.quality,
                            created_at=job.created_at,
                            is_completed=job.is_completed,
                            fallback_used=job.fallback_used,
                            original_image=job.original_image_bytes,
                            converted_image=job.converted_image_bytes,
                        )
                    )
        except SQLAlchemyError as exc:
            logger.error("job_persist_failed", job_id=job.id, error=str(exc))
            raise StoreError(f"Job {job.id} could not be stored") from exc
        logger.info("job_persisted", job_id=job.id, format=job.format.value)
        return job.id

    def get(self, job_id: str) -> Optional[ConversionJob]:
        with self._session_factory() as session:
            model = session.get(ConversionJobModel, job_id)
            return self._to_job(model) if model is not None else None

    def list_jobs(self) -> List[ConversionJob]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(ConversionJobModel).order_by(ConversionJobModel.created_at, ConversionJobModel.id)
            )
            return [self._to_job(row) for row in rows]

    @staticmethod
    def _to_job(model: ConversionJobModel) -> ConversionJob:
        created_at = model.created_at
        if created_at.tzinfo is None:
            # SQLite drops the offset; everything is written in UTC
            created_at = created_at.replace(tzinfo=timezone.utc)
        return ConversionJob(
            id=model.id,
            original_image_bytes=model.original_image,
            converted_image_bytes=model.converted_image,
            format=ConversionFormat(model.format),
            quality=model.quality,
            created_at=created_at,
            is_completed=model.is_completed,
            fallback_used=model.fallback_used,
        )
