"""Shared API dependencies."""

from fastapi import Depends, HTTPException, Request, status

from photo_converter.core.container import AppContext
from photo_converter.core.logging import bind_session
from photo_converter.services.conversion_session import ConversionSession


def get_context(request: Request) -> AppContext:
    """Return the application context created by the lifespan handler."""

    return request.app.state.context


def verify_api_key(request: Request, context: AppContext = Depends(get_context)) -> str:
    """Validate the static API token if one is configured.

    The token is read from the header named by the application's own settings.
    """

    expected = context.settings.api_token
    if not expected:
        return ""

    token = request.headers.get(context.settings.auth_token_header)
    if token in {expected, f"Bearer {expected}"}:
        return token or ""

    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API token")


def get_auth_dependency(token: str = Depends(verify_api_key)) -> str:
    """Expose dependency alias for routers."""

    return token


async def get_session(session_id: str, context: AppContext = Depends(get_context)) -> ConversionSession:
    """Resolve ``session_id`` to a live conversion session or 404.

    Runs on the event loop so the session id bound to the log context is
    inherited by the handler and any encode task it starts.
    """

    session = context.sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    bind_session(session.id)
    return session
