"""Routes driving conversion sessions.

Handlers are coroutines so that every session event is dispatched on the
event loop that owns the sessions.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from photo_converter.api.dependencies import get_auth_dependency, get_context, get_session
from photo_converter.core.container import AppContext
from photo_converter.core.errors import ExportFailed
from photo_converter.models.job import ConversionFormat
from photo_converter.models.session import FormatChoice, FormatInfo, QualityChoice, SessionSnapshot
from photo_converter.models.state import ConversionStage, TransitionResult
from photo_converter.services.conversion_session import ConversionSession

router = APIRouter(prefix="/conversions", tags=["conversions"], dependencies=[Depends(get_auth_dependency)])


def _accepted_or_409(session: ConversionSession, result: TransitionResult) -> SessionSnapshot:
    """Return the snapshot, or raise 409 carrying the rejection code."""

    if not result.accepted:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"rejection": result.rejection.value if result.rejection else None, "stage": result.state.stage.value},
        )
    return session.snapshot()


@router.get("/formats", response_model=List[FormatInfo], summary="List selectable output formats")
async def list_formats() -> List[FormatInfo]:
    return [FormatInfo.from_format(fmt) for fmt in ConversionFormat]


@router.post(
    "",
    response_model=SessionSnapshot,
    status_code=status.HTTP_201_CREATED,
    summary="Open a new conversion session",
)
async def create_session(context: AppContext = Depends(get_context)) -> SessionSnapshot:
    return context.sessions.create().snapshot()


@router.get("/{session_id}", response_model=SessionSnapshot, summary="Retrieve session state")
async def get_session_state(session: ConversionSession = Depends(get_session)) -> SessionSnapshot:
    return session.snapshot()


@router.post("/{session_id}/photo", response_model=SessionSnapshot, summary="Load the photo to convert")
async def load_photo(request: Request, session: ConversionSession = Depends(get_session)) -> SessionSnapshot:
    """Accept raw image bytes as the request body."""

    data = await request.body()
    return _accepted_or_409(session, session.load_photo(data))


@router.post("/{session_id}/format", response_model=SessionSnapshot, summary="Choose the output format")
async def choose_format(payload: FormatChoice, session: ConversionSession = Depends(get_session)) -> SessionSnapshot:
    return _accepted_or_409(session, session.choose_format(payload.format))


@router.post("/{session_id}/quality", response_model=SessionSnapshot, summary="Choose the output quality")
async def choose_quality(payload: QualityChoice, session: ConversionSession = Depends(get_session)) -> SessionSnapshot:
    return _accepted_or_409(session, session.choose_quality(payload.quality))


@router.post(
    "/{session_id}/start",
    response_model=SessionSnapshot,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start the conversion",
)
async def start_conversion(
    wait: bool = False, session: ConversionSession = Depends(get_session)
) -> SessionSnapshot:
    """Launch the encode; with ``wait=true`` respond once it has settled."""

    snapshot = _accepted_or_409(session, session.start_conversion())
    if wait:
        await session.wait_until_settled()
        return session.snapshot()
    return snapshot


@router.post("/{session_id}/reset", response_model=SessionSnapshot, summary="Return the session to idle")
async def reset_session(session: ConversionSession = Depends(get_session)) -> SessionSnapshot:
    return _accepted_or_409(session, session.reset())


@router.get("/{session_id}/result", summary="Download the converted image")
async def get_result(session: ConversionSession = Depends(get_session)) -> Response:
    if (
        session.state.stage is not ConversionStage.completed
        or session.converted_bytes is None
        or session.format is None
    ):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Conversion not completed")
    # substituted WEBP output is JPEG data
    output_format = ConversionFormat.jpeg if session.fallback_used else session.format
    return Response(content=session.converted_bytes, media_type=output_format.mime_type)


@router.post("/{session_id}/export", summary="Write the converted image to the export directory")
async def export_result(session: ConversionSession = Depends(get_session)) -> dict:
    try:
        path = session.export()
    except ExportFailed as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return {"path": str(path)}


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Discard a session")
async def discard_session(session_id: str, context: AppContext = Depends(get_context)) -> Response:
    if not await context.sessions.discard(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
