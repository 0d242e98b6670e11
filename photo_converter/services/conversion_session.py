"""Conversion workflow state machine.

A session walks one image through ``idle -> selecting -> converting ->
completed | failed``. All state lives on the asyncio event loop that calls
:meth:`ConversionSession.dispatch`; encoding and the job write run in worker
threads and their outcome comes back as an ``EncodeSucceeded``/``EncodeFailed``
event tagged with the ticket of the encode that produced it. Tickets are bumped on
every start and reset, so a completion from a cancelled encode never lands.
"""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple, Type

from photo_converter.core.errors import EncodeError, ExportFailed, FailureReason, Rejection, StoreError
from photo_converter.core.logging import get_logger
from photo_converter.models.job import ConversionFormat, ConversionJob, quality_tier
from photo_converter.models.session import SessionSnapshot
from photo_converter.models.state import (
    COMPLETED,
    CONVERTING,
    IDLE,
    SELECTING,
    ConversionStage,
    ConversionState,
    EncodeFailed,
    EncodeSucceeded,
    Event,
    FormatChosen,
    PhotoLoaded,
    QualityChosen,
    Reset,
    StartConversion,
    TransitionResult,
    WorkflowStep,
)
from photo_converter.services.export import ExportSink
from photo_converter.services.image_encoder import EncodeResult, ImageEncoder
from photo_converter.services.job_store import JobStore

logger = get_logger(__name__)

Handler = Callable[["ConversionSession", Event], TransitionResult]


class ConversionSession:
    """Single-writer state machine for one conversion workflow."""

    def __init__(
        self,
        encoder: ImageEncoder,
        job_store: JobStore,
        *,
        session_id: Optional[str] = None,
        export_sink: Optional[ExportSink] = None,
        archival_format: ConversionFormat = ConversionFormat.jpeg,
        encode_delay_seconds: float = 0.0,
        encode_timeout_seconds: Optional[float] = None,
    ) -> None:
        self.id = session_id or f"ses_{uuid.uuid4().hex}"
        self._encoder = encoder
        self._job_store = job_store
        self._export_sink = export_sink
        self._archival_format = archival_format
        self._encode_delay = encode_delay_seconds
        self._encode_timeout = encode_timeout_seconds

        self._state: ConversionState = IDLE
        self._original: Optional[bytes] = None
        self._format: Optional[ConversionFormat] = None
        self._quality: Optional[float] = None
        self._converted: Optional[bytes] = None
        self._fallback_used = False
        self._job: Optional[ConversionJob] = None

        self._ticket = 0
        self._encode_task: Optional[asyncio.Task[None]] = None

    # -- read side -----------------------------------------------------

    @property
    def state(self) -> ConversionState:
        return self._state

    @property
    def step(self) -> WorkflowStep:
        return WorkflowStep.project(self._state, format_chosen=self._format is not None)

    @property
    def original_bytes(self) -> Optional[bytes]:
        return self._original

    @property
    def format(self) -> Optional[ConversionFormat]:
        return self._format

    @property
    def quality(self) -> Optional[float]:
        return self._quality

    @property
    def converted_bytes(self) -> Optional[bytes]:
        return self._converted

    @property
    def fallback_used(self) -> bool:
        return self._fallback_used

    @property
    def job(self) -> Optional[ConversionJob]:
        """The persisted job once the session is completed."""

        return self._job

    @property
    def encode_in_flight(self) -> bool:
        return self._encode_task is not None and not self._encode_task.done()

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.id,
            stage=self._state.stage,
            step=self.step,
            failure_reason=self._state.reason,
            failure_message=self._state.message,
            format=self._format,
            quality=self._quality,
            quality_tier=quality_tier(self._quality) if self._quality is not None else None,
            fallback_used=self._fallback_used,
            job_id=self._job.id if self._job is not None else None,
            converted_size=len(self._converted) if self._converted is not None else None,
        )

    # -- events --------------------------------------------------------

    def dispatch(self, event: Event) -> TransitionResult:
        """Apply ``event`` and report whether it was accepted.

        Must be called from the event loop that owns the session. Events not
        valid for the current state leave everything untouched and come back
        as a rejection.
        """

        handler = _TRANSITIONS.get((self._state.stage, type(event)))
        if handler is None:
            rejection = (
                Rejection.stale_completion
                if isinstance(event, (EncodeSucceeded, EncodeFailed))
                else Rejection.event_not_allowed
            )
            logger.debug(
                "session_event_rejected",
                session_id=self.id,
                stage=self._state.stage.value,
                event_type=type(event).__name__,
                rejection=rejection.value,
            )
            return TransitionResult.rejected(self._state, rejection)
        return handler(self, event)

    def load_photo(self, data: bytes) -> TransitionResult:
        return self.dispatch(PhotoLoaded(data))

    def choose_format(self, fmt: ConversionFormat) -> TransitionResult:
        return self.dispatch(FormatChosen(fmt))

    def choose_quality(self, quality: float) -> TransitionResult:
        return self.dispatch(QualityChosen(quality))

    def start_conversion(self) -> TransitionResult:
        return self.dispatch(StartConversion())

    def reset(self) -> TransitionResult:
        return self.dispatch(Reset())

    async def wait_until_settled(self) -> ConversionState:
        """Wait for the in-flight encode, if any, to post its result."""

        task = self._encode_task
        if task is not None:
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return self._state

    async def close(self) -> None:
        """Cancel any outstanding encode and wait for it to unwind."""

        task = self._encode_task
        self._ticket += 1
        self._encode_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def export(self) -> Path:
        """Write the converted image through the export sink."""

        if self._state != COMPLETED or self._converted is None or self._format is None:
            raise ExportFailed("no completed conversion to export")
        if self._export_sink is None:
            raise ExportFailed("no export sink configured")
        return self._export_sink.write(self._converted, self._format)

    # -- transition handlers -------------------------------------------

    def _on_photo_loaded(self, event: PhotoLoaded) -> TransitionResult:
        if not self._encoder.can_decode(event.data):
            logger.info("photo_load_failed", session_id=self.id, size=len(event.data))
            return TransitionResult.rejected(self._state, Rejection.invalid_image)
        self._original = event.data
        self._state = SELECTING
        logger.info("photo_loaded", session_id=self.id, size=len(event.data))
        return TransitionResult.ok(self._state)

    def _on_format_chosen(self, event: FormatChosen) -> TransitionResult:
        self._format = event.format
        return TransitionResult.ok(self._state)

    def _on_quality_chosen(self, event: QualityChosen) -> TransitionResult:
        if not 0.0 <= event.quality <= 1.0:
            return TransitionResult.rejected(self._state, Rejection.invalid_quality)
        self._quality = event.quality
        return TransitionResult.ok(self._state)

    def _on_start(self, event: StartConversion) -> TransitionResult:
        if self._original is None or self._format is None or self._quality is None:
            return TransitionResult.rejected(self._state, Rejection.incomplete_selection)

        loop = asyncio.get_running_loop()
        self._ticket += 1
        self._state = CONVERTING
        self._encode_task = loop.create_task(
            self._run_encode(self._ticket, self._original, self._format, self._quality),
            name=f"encode-{self.id}-{self._ticket}",
        )
        logger.info(
            "conversion_started",
            session_id=self.id,
            format=self._format.value,
            quality=self._quality,
            ticket=self._ticket,
        )
        return TransitionResult.ok(self._state)

    def _on_start_while_converting(self, event: StartConversion) -> TransitionResult:
        return TransitionResult.rejected(self._state, Rejection.encode_in_flight)

    def _on_encode_succeeded(self, event: EncodeSucceeded) -> TransitionResult:
        if event.ticket != self._ticket:
            return TransitionResult.rejected(self._state, Rejection.stale_completion)
        self._encode_task = None

        job = event.job
        self._converted = job.converted_image_bytes
        self._fallback_used = job.fallback_used
        self._job = job
        self._state = COMPLETED
        logger.info(
            "conversion_completed",
            session_id=self.id,
            job_id=job.id,
            bytes=len(job.converted_image_bytes or b""),
            fallback_used=job.fallback_used,
        )
        return TransitionResult.ok(self._state)

    def _on_encode_failed(self, event: EncodeFailed) -> TransitionResult:
        if event.ticket != self._ticket:
            return TransitionResult.rejected(self._state, Rejection.stale_completion)
        self._encode_task = None
        self._state = ConversionState.failed(event.reason, event.message)
        logger.info("conversion_failed", session_id=self.id, reason=event.reason.value)
        return TransitionResult.ok(self._state)

    def _on_reset(self, event: Reset) -> TransitionResult:
        task = self._encode_task
        if task is not None and not task.done():
            task.cancel()
            logger.info("conversion_cancelled", session_id=self.id, ticket=self._ticket)
        self._encode_task = None
        self._ticket += 1

        self._original = None
        self._format = None
        self._quality = None
        self._converted = None
        self._fallback_used = False
        self._job = None
        self._state = IDLE
        return TransitionResult.ok(self._state)

    # -- encode worker -------------------------------------------------

    async def _run_encode(self, ticket: int, data: bytes, fmt: ConversionFormat, quality: float) -> None:
        """Encode and persist off-loop, then post the outcome back as an event."""

        try:
            if self._encode_delay > 0:
                await asyncio.sleep(self._encode_delay)
            work = asyncio.to_thread(self._encode_with_archive, data, fmt, quality)
            if self._encode_timeout is not None:
                converted, archival = await asyncio.wait_for(work, self._encode_timeout)
            else:
                converted, archival = await work
        except asyncio.TimeoutError:
            self.dispatch(EncodeFailed(ticket, FailureReason.encode_timeout, "encode timed out"))
            return
        except EncodeError as exc:
            self.dispatch(EncodeFailed(ticket, exc.code, str(exc)))
            return
        except Exception as exc:  # pragma: no cover
            logger.exception("conversion_encode_crashed", session_id=self.id, error=str(exc))
            self.dispatch(EncodeFailed(ticket, FailureReason.encoding_failed, str(exc)))
            return

        if ticket != self._ticket:
            # reset while encoding; nothing may be written for this ticket
            return

        job = ConversionJob(
            original_image_bytes=archival.data,
            converted_image_bytes=converted.data,
            format=fmt,
            quality=quality,
            is_completed=True,
            fallback_used=converted.fallback_used,
        )
        try:
            await asyncio.to_thread(self._job_store.persist, job)
        except StoreError as exc:
            logger.error("conversion_persist_failed", session_id=self.id, job_id=job.id, error=str(exc))
            self.dispatch(EncodeFailed(ticket, FailureReason.persistence_failed, str(exc)))
            return

        self.dispatch(EncodeSucceeded(ticket=ticket, job=job))

    def _encode_with_archive(
        self, data: bytes, fmt: ConversionFormat, quality: float
    ) -> Tuple[EncodeResult, EncodeResult]:
        """Encode the user's choice plus a maximum-fidelity archival copy.

        Runs in a worker thread and must not touch session state.
        """

        converted = self._encoder.encode(data, fmt, quality)
        archival = self._encoder.encode(data, self._archival_format, 1.0)
        return converted, archival


_TRANSITIONS: Dict[Tuple[ConversionStage, Type[object]], Handler] = {
    (ConversionStage.idle, PhotoLoaded): ConversionSession._on_photo_loaded,
    (ConversionStage.selecting, FormatChosen): ConversionSession._on_format_chosen,
    (ConversionStage.selecting, QualityChosen): ConversionSession._on_quality_chosen,
    (ConversionStage.selecting, StartConversion): ConversionSession._on_start,
    (ConversionStage.converting, StartConversion): ConversionSession._on_start_while_converting,
    (ConversionStage.converting, EncodeSucceeded): ConversionSession._on_encode_succeeded,
    (ConversionStage.converting, EncodeFailed): ConversionSession._on_encode_failed,
    (ConversionStage.converting, Reset): ConversionSession._on_reset,
    (ConversionStage.completed, Reset): ConversionSession._on_reset,
    (ConversionStage.failed, Reset): ConversionSession._on_reset,
}  # type: ignore[dict-item]
