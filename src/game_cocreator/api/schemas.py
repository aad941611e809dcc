"""Request models and response payloads for the HTTP layer."""

from uuid import UUID

from pydantic import BaseModel, Field

from game_cocreator.domain.content import StepType
from game_cocreator.domain.sessions import (
    Artifact,
    ProgressSnapshot,
    Session,
    Step,
    SubjectSpec,
    VariantBatch,
    VariantPreview,
)
from game_cocreator.services.catalog import StepGuideline
from game_cocreator.services.context import context_payload
from game_cocreator.services.sessions import StartResult, variant_payload


class StartRequest(BaseModel):
    """Body of a start-session request."""

    title: str = Field(min_length=1)
    description: str = ""
    category: str = "platformer"
    owner_id: str | None = None
    subject_id: UUID | None = None
    include_steps: list[StepType] | None = None
    skip_steps: list[StepType] = Field(default_factory=list)

    def to_spec(self) -> SubjectSpec:
        return SubjectSpec(
            title=self.title,
            description=self.description,
            category=self.category,
            owner_id=self.owner_id,
            subject_id=self.subject_id,
            include_steps=(
                tuple(self.include_steps) if self.include_steps is not None else None
            ),
            skip_steps=tuple(self.skip_steps),
        )


class GenerateRequest(BaseModel):
    """Body of a generate-variants request."""

    count: int = Field(default=5, ge=1)
    custom_instruction: str | None = None


class SelectRequest(BaseModel):
    """Body of a select-variant request."""

    variant_id: UUID
    custom_instruction: str | None = None


class PauseRequest(BaseModel):
    """Body of a pause request."""

    reason: str = ""


def progress_payload(progress: ProgressSnapshot) -> dict[str, object]:
    return {
        "session_id": str(progress.session_id),
        "status": progress.status.value,
        "current_step_index": progress.current_step_index,
        "total_steps": progress.total_steps,
        "step_id": str(progress.step_id) if progress.step_id else None,
        "step_name": progress.step_name,
        "step_description": progress.step_description,
        "variant_count": progress.variant_count,
        "awaiting_selection": progress.awaiting_selection,
        "completed_steps": progress.completed_steps,
        "percent": progress.percent,
    }


def batch_payload(batch: VariantBatch) -> dict[str, object]:
    return {
        "session_id": str(batch.session_id),
        "step_id": str(batch.step_id),
        "variants": [variant_payload(variant) for variant in batch.variants],
        "generated_at": batch.generated_at.isoformat(),
        "total_count": batch.total_count,
    }


def start_payload(result: StartResult) -> dict[str, object]:
    return {
        "session_id": str(result.session_id),
        "subject_id": str(result.subject_id),
        "progress": progress_payload(result.progress),
        "initial_batch": (
            batch_payload(result.initial_batch) if result.initial_batch else None
        ),
    }


def step_payload(step: Step) -> dict[str, object]:
    return {
        "id": str(step.id),
        "name": step.name,
        "description": step.description,
        "type": step.step_type.value,
        "skippable": step.skippable,
        "completed": step.completed,
        "selected_variant_id": (
            str(step.selected_variant_id) if step.selected_variant_id else None
        ),
        "custom_instruction": step.custom_instruction,
        "variants": [variant_payload(variant) for variant in step.variants],
    }


def artifact_payload(artifact: Artifact) -> dict[str, object]:
    return {
        "session_id": str(artifact.session_id),
        "title": artifact.title,
        "archetype": artifact.archetype,
        "files": artifact.files,
        "context": context_payload(artifact.context),
        "is_placeholder": artifact.is_placeholder,
        "diagnostics": list(artifact.diagnostics),
    }


def session_payload(session: Session) -> dict[str, object]:
    """Return the full, JSON-ready state of a session."""
    return {
        "id": str(session.id),
        "subject_id": str(session.subject_id),
        "owner_id": session.owner_id,
        "title": session.title,
        "category": session.category,
        "status": session.status.value,
        "is_active": session.is_active,
        "current_step_index": session.current_step_index,
        "total_steps": session.total_steps,
        "started_at": session.started_at.isoformat(),
        "last_activity_at": session.last_activity_at.isoformat(),
        "finished_at": (
            session.finished_at.isoformat() if session.finished_at else None
        ),
        "steps": [step_payload(step) for step in session.steps],
        "final_choices": {
            str(step_id): str(variant_id)
            for step_id, variant_id in session.final_choices.items()
        },
        "artifact": (
            artifact_payload(session.artifact) if session.artifact else None
        ),
        "diagnostics": list(session.diagnostics),
    }


def preview_payload(preview: VariantPreview) -> dict[str, object]:
    return {
        "variant_id": str(preview.variant_id),
        "kind": preview.kind,
        "data": preview.data,
    }


def guideline_payload(guideline: StepGuideline) -> dict[str, object]:
    return {
        "step_type": guideline.step_type.value,
        "accepts_uploads": guideline.accepts_uploads,
        "accepted_formats": list(guideline.accepted_formats),
        "max_size_bytes": guideline.max_size_bytes,
        "recommended_dimensions": (
            list(guideline.recommended_dimensions)
            if guideline.recommended_dimensions
            else None
        ),
        "upload_description": guideline.upload_description,
        "placeholder": guideline.placeholder,
        "examples": list(guideline.examples),
        "tips": list(guideline.tips),
    }
