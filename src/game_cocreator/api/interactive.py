"""Interactive co-creation endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Request

from game_cocreator.api.schemas import (
    GenerateRequest,
    PauseRequest,
    SelectRequest,
    StartRequest,
    artifact_payload,
    batch_payload,
    guideline_payload,
    preview_payload,
    progress_payload,
    session_payload,
    start_payload,
)
from game_cocreator.domain.content import StepType  # noqa: TC001
from game_cocreator.domain.errors import ValidationError

if TYPE_CHECKING:
    from game_cocreator.containers import AppContainer
    from game_cocreator.services.sessions import SessionController

router = APIRouter(prefix="/interactive", tags=["interactive"])


def _controller(request: Request) -> SessionController:
    container: AppContainer = request.app.state.container
    return container.controller


def declared_upload_size(raw: str | None, data: bytes) -> int:
    """Return the Content-Length the client declared, or the body length."""
    if raw is None:
        return len(data)
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"Invalid Content-Length: {raw!r}") from exc


@router.get("/guidelines/{step_type}")
async def step_guidelines(step_type: StepType, request: Request) -> dict[str, object]:
    """Return upload limits and instruction hints for a step type."""
    container: AppContainer = request.app.state.container
    return guideline_payload(container.catalog.guideline(step_type))


@router.get("/categories")
async def list_categories(request: Request) -> dict[str, object]:
    """Return the subject categories that have their own template."""
    container: AppContainer = request.app.state.container
    return {"categories": container.catalog.categories()}


@router.post("/start")
async def start_session(body: StartRequest, request: Request) -> dict[str, object]:
    """Start a session and return its first batch of variants."""
    result = await _controller(request).start(body.to_spec())
    return start_payload(result)


@router.get("/{session_id}/progress")
async def get_progress(session_id: UUID, request: Request) -> dict[str, object]:
    """Return a progress snapshot."""
    return progress_payload(await _controller(request).get_progress(session_id))


@router.get("/{session_id}/state")
async def get_state(session_id: UUID, request: Request) -> dict[str, object]:
    """Return the full session state including every variant."""
    return session_payload(await _controller(request).describe(session_id))


@router.post("/{session_id}/steps/{step_id}/variants")
async def generate_variants(
    session_id: UUID, step_id: UUID, body: GenerateRequest, request: Request
) -> dict[str, object]:
    """Generate more variants for the current step."""
    batch = await _controller(request).generate_variants(
        session_id, step_id, body.count, body.custom_instruction
    )
    return batch_payload(batch)


@router.post("/{session_id}/steps/{step_id}/select")
async def select_variant(
    session_id: UUID, step_id: UUID, body: SelectRequest, request: Request
) -> dict[str, object]:
    """Select a variant and advance to the next step."""
    progress = await _controller(request).select_variant(
        session_id, step_id, body.variant_id, body.custom_instruction
    )
    return progress_payload(progress)


@router.post("/{session_id}/steps/{step_id}/upload")
async def upload_variant(
    session_id: UUID, step_id: UUID, request: Request
) -> dict[str, object]:
    """Store the raw request body as an uploaded variant."""
    data = await request.body()
    declared_type = request.headers.get("content-type", "")
    size = declared_upload_size(request.headers.get("content-length"), data)
    batch = await _controller(request).upload_variant(
        session_id,
        step_id,
        data,
        declared_type,
        size,
        request.headers.get("x-filename"),
    )
    return batch_payload(batch)


@router.get("/{session_id}/steps/{step_id}/variants/{variant_id}/preview")
async def preview_variant(
    session_id: UUID, step_id: UUID, variant_id: UUID, request: Request
) -> dict[str, object]:
    """Return a text, image or file preview of a variant."""
    preview = await _controller(request).preview_variant(
        session_id, step_id, variant_id
    )
    return preview_payload(preview)


@router.post("/{session_id}/pause")
async def pause_session(
    session_id: UUID, request: Request, body: PauseRequest | None = None
) -> dict[str, object]:
    """Pause the session."""
    reason = body.reason if body else ""
    return progress_payload(await _controller(request).pause(session_id, reason))


@router.post("/{session_id}/resume")
async def resume_session(session_id: UUID, request: Request) -> dict[str, object]:
    """Resume a paused session."""
    return progress_payload(await _controller(request).resume(session_id))


@router.post("/{session_id}/skip")
async def skip_step(session_id: UUID, request: Request) -> dict[str, object]:
    """Skip the current optional step."""
    return progress_payload(await _controller(request).skip(session_id))


@router.post("/{session_id}/cancel")
async def cancel_session(session_id: UUID, request: Request) -> dict[str, object]:
    """Cancel the session."""
    return progress_payload(await _controller(request).cancel(session_id))


@router.post("/{session_id}/complete")
async def complete_session(session_id: UUID, request: Request) -> dict[str, object]:
    """Assemble the final game from the selected variants."""
    return artifact_payload(await _controller(request).complete(session_id))
