"""Admin API endpoints with simple token auth."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from game_cocreator.api.schemas import progress_payload, session_payload
from game_cocreator.domain.errors import NotFoundError

if TYPE_CHECKING:
    from game_cocreator.containers import AppContainer

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_admin_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.admin_token


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str = Depends(_get_admin_token),
) -> None:
    """Ensure requests include a valid admin token."""
    if not x_admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.get("/health", dependencies=[Depends(require_admin)])
async def admin_health() -> dict[str, str]:
    """Admin health check endpoint."""
    return {"status": "ok"}


@router.get("/sessions", dependencies=[Depends(require_admin)])
async def list_sessions(request: Request) -> dict[str, object]:
    """Return progress for every live session."""
    container: AppContainer = request.app.state.container
    sessions = []
    for session_id in container.store.session_ids():
        try:
            progress = await container.controller.get_progress(session_id)
        except NotFoundError:
            continue
        sessions.append(progress_payload(progress))
    return {"sessions": sessions}


@router.get("/sessions/{session_id}", dependencies=[Depends(require_admin)])
async def session_detail(session_id: UUID, request: Request) -> dict[str, object]:
    """Return the full state of one session."""
    container: AppContainer = request.app.state.container
    return session_payload(await container.controller.describe(session_id))
