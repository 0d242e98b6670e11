"""Read-only views of a conversion session for the HTTP layer."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from photo_converter.core.errors import FailureReason
from photo_converter.models.job import ConversionFormat
from photo_converter.models.state import ConversionStage, WorkflowStep


class SessionSnapshot(BaseModel):
    """Current state of one conversion session."""

    session_id: str
    stage: ConversionStage
    step: WorkflowStep
    failure_reason: Optional[FailureReason] = None
    failure_message: Optional[str] = None
    format: Optional[ConversionFormat] = None
    quality: Optional[float] = None
    quality_tier: Optional[str] = None
    fallback_used: bool = False
    job_id: Optional[str] = None
    converted_size: Optional[int] = None


class FormatChoice(BaseModel):
    format: ConversionFormat


class QualityChoice(BaseModel):
    quality: float = Field(..., description="Quality factor between 0 and 1.")


class FormatInfo(BaseModel):
    """Description of a selectable output format."""

    format: ConversionFormat
    extension: str
    mime_type: str
    lossless: bool
    description: str

    @classmethod
    def from_format(cls, fmt: ConversionFormat) -> "FormatInfo":
        return cls(
            format=fmt,
            extension=fmt.extension,
            mime_type=fmt.mime_type,
            lossless=fmt.is_lossless,
            description=fmt.description,
        )
