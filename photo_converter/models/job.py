"""Conversion job and format models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ConversionFormat(str, Enum):
    """Output formats the user can pick."""

    jpg = "JPG"
    jpeg = "JPEG"
    png = "PNG"
    webp = "WEBP"

    @property
    def extension(self) -> str:
        """Canonical file extension, without the dot."""

        return self.value.lower()

    @property
    def mime_type(self) -> str:
        return _MIME_TYPES[self]

    @property
    def pillow_format(self) -> str:
        """Codec name understood by ``PIL.Image.save``."""

        return "PNG" if self is ConversionFormat.png else "JPEG"

    @property
    def is_lossless(self) -> bool:
        return self is ConversionFormat.png

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_MIME_TYPES = {
    ConversionFormat.jpg: "image/jpeg",
    ConversionFormat.jpeg: "image/jpeg",
    ConversionFormat.png: "image/png",
    ConversionFormat.webp: "image/webp",
}

_DESCRIPTIONS = {
    ConversionFormat.jpg: "Most common format, small file size",
    ConversionFormat.jpeg: "High quality, widely supported",
    ConversionFormat.png: "Transparency support, lossless",
    ConversionFormat.webp: "Modern format, by Google",
}


def quality_tier(quality: float) -> str:
    """Return the label shown next to a quality factor in ``[0, 1]``."""

    percentage = int(round(quality * 100))
    if percentage <= 30:
        return "Basic"
    if percentage <= 60:
        return "Standard"
    if percentage <= 80:
        return "High"
    return "Premium"


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversionJob(BaseModel):
    """A conversion record; immutable once built."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_job_id)
    original_image_bytes: bytes
    converted_image_bytes: Optional[bytes] = None
    format: ConversionFormat
    quality: float = Field(ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utcnow)
    is_completed: bool = False
    fallback_used: bool = False

    @model_validator(mode="after")
    def ensure_completion_matches_output(self) -> "ConversionJob":
        """Converted bytes are present exactly when the job is completed."""

        if (self.converted_image_bytes is not None) != self.is_completed:
            raise ValueError("converted_image_bytes must be set if and only if is_completed is true")
        return self

    @property
    def output_format(self) -> ConversionFormat:
        """Format of the stored converted bytes; substituted WEBP is JPEG data."""

        return ConversionFormat.jpeg if self.fallback_used else self.format


class JobSummary(BaseModel):
    """Metadata view of a stored job, without the image blobs."""

    id: str
    format: ConversionFormat
    quality: float
    created_at: datetime
    is_completed: bool
    fallback_used: bool = False
    output_format: ConversionFormat
    original_size: int
    converted_size: Optional[int] = None

    @classmethod
    def from_job(cls, job: ConversionJob) -> "JobSummary":
        return cls(
            id=job.id,
            format=job.format,
            quality=job.quality,
            created_at=job.created_at,
            is_completed=job.is_completed,
            fallback_used=job.fallback_used,
            output_format=job.output_format,
            original_size=len(job.original_image_bytes),
            converted_size=len(job.converted_image_bytes) if job.converted_image_bytes is not None else None,
        )
