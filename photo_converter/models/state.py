"""Workflow state, events and transition results for a conversion session."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional, Union

from photo_converter.core.errors import FailureReason, Rejection
from photo_converter.models.job import ConversionFormat, ConversionJob


class ConversionStage(str, Enum):
    """Tags of the conversion state variant."""

    idle = "idle"
    selecting = "selecting"
    converting = "converting"
    completed = "completed"
    failed = "failed"


@dataclass(frozen=True)
class ConversionState:
    """Tagged state; ``Failed`` states compare by reason code, never by message."""

    stage: ConversionStage
    reason: Optional[FailureReason] = None
    message: Optional[str] = field(default=None, compare=False)

    @classmethod
    def failed(cls, reason: FailureReason, message: str | None = None) -> "ConversionState":
        return cls(ConversionStage.failed, reason, message)

    @property
    def is_terminal(self) -> bool:
        return self.stage in (ConversionStage.completed, ConversionStage.failed)


IDLE = ConversionState(ConversionStage.idle)
SELECTING = ConversionState(ConversionStage.selecting)
CONVERTING = ConversionState(ConversionStage.converting)
COMPLETED = ConversionState(ConversionStage.completed)


class WorkflowStep(IntEnum):
    """Screen index for the presentation layer."""

    pick_photo = 0
    choose_format = 1
    choose_quality = 2
    converting = 3
    result = 4

    @classmethod
    def project(cls, state: ConversionState, *, format_chosen: bool) -> "WorkflowStep":
        """Derive the step from the session state; it is never stored."""

        if state.stage is ConversionStage.idle:
            return cls.pick_photo
        if state.stage is ConversionStage.selecting:
            return cls.choose_quality if format_chosen else cls.choose_format
        if state.stage is ConversionStage.completed:
            return cls.result
        return cls.converting


@dataclass(frozen=True)
class PhotoLoaded:
    data: bytes = field(repr=False)


@dataclass(frozen=True)
class FormatChosen:
    format: ConversionFormat


@dataclass(frozen=True)
class QualityChosen:
    quality: float


@dataclass(frozen=True)
class StartConversion:
    pass


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class EncodeSucceeded:
    """Posted by the encode task once ``job`` is persisted.

    ``ticket`` identifies the encode it belongs to.
    """

    ticket: int
    job: ConversionJob = field(repr=False)


@dataclass(frozen=True)
class EncodeFailed:
    ticket: int
    reason: FailureReason
    message: Optional[str] = None


Event = Union[
    PhotoLoaded,
    FormatChosen,
    QualityChosen,
    StartConversion,
    Reset,
    EncodeSucceeded,
    EncodeFailed,
]


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of dispatching one event to a session."""

    accepted: bool
    state: ConversionState
    rejection: Optional[Rejection] = None

    @classmethod
    def ok(cls, state: ConversionState) -> "TransitionResult":
        return cls(True, state)

    @classmethod
    def rejected(cls, state: ConversionState, rejection: Rejection) -> "TransitionResult":
        return cls(False, state, rejection)
