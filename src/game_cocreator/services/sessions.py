"""Session state machine for guided, variant-driven co-creation.

Every read or write of a session runs as a command on that session's actor
(see ``services.store``). Slow work such as content generation and upload
storage runs between two commands: a *prepare* command validates the request
and snapshots the context, and a *commit* command re-validates before the
results are appended. A batch whose step stopped being current in between is
discarded and the caller gets ``InvalidStateError``.
"""

import copy
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from uuid import UUID, uuid4

from game_cocreator.domain.content import (
    GenerationContext,
    StepType,
    UploadedContent,
    content_payload,
)
from game_cocreator.domain.errors import (
    InvalidStateError,
    NotFoundError,
    ProviderFailure,
    ValidationError,
)
from game_cocreator.domain.sessions import (
    Artifact,
    ProgressSnapshot,
    Provenance,
    Session,
    SessionStatus,
    Step,
    SubjectSpec,
    Variant,
    VariantBatch,
    VariantPreview,
)
from game_cocreator.services import events
from game_cocreator.services.assembler import AssetAssembler
from game_cocreator.services.catalog import StepTemplateCatalog
from game_cocreator.services.context import build_context
from game_cocreator.services.events import EventBroadcaster
from game_cocreator.services.generation import VariantGenerator
from game_cocreator.services.store import SessionStore, utc_now
from game_cocreator.services.uploads import UploadHandler

_logger = logging.getLogger(__name__)

_ACTIVE = frozenset({SessionStatus.STEP_ACTIVE})
# In-flight results are still appended while the session is paused.
_COMMITTABLE = frozenset({SessionStatus.STEP_ACTIVE, SessionStatus.PAUSED})


@dataclass(frozen=True)
class StartResult:
    """Outcome of starting a session."""

    session_id: UUID
    subject_id: UUID
    progress: ProgressSnapshot
    initial_batch: VariantBatch | None


@dataclass
class SessionController:
    """Drives step sequencing, variant batches, selection and completion."""

    catalog: StepTemplateCatalog
    generator: VariantGenerator
    uploads: UploadHandler
    store: SessionStore
    assembler: AssetAssembler
    broadcaster: EventBroadcaster
    initial_variant_count: int = 5
    max_variant_count: int = 10
    clock: Callable[[], datetime] = utc_now

    def __post_init__(self) -> None:
        if self.max_variant_count < 1:
            raise ValueError("max_variant_count must be at least 1")
        if not 0 <= self.initial_variant_count <= self.max_variant_count:
            raise ValueError(
                "initial_variant_count must be between 0 and "
                f"{self.max_variant_count}"
            )

    async def sweep(self) -> list[UUID]:
        """Cancel sessions left idle, then evict expired finished ones."""
        for session_id in await self.store.idle_session_ids():
            try:
                await self.cancel(session_id)
            except (InvalidStateError, NotFoundError):
                continue
            _logger.info("Cancelled idle session %s", session_id)
        return await self.store.evict_expired()

    async def start(self, subject: SubjectSpec) -> StartResult:
        """Create a session from the catalog and request the first batch."""
        title = subject.title.strip()
        if not title:
            raise ValidationError("Title must not be empty")
        definitions = self.catalog.resolve(
            subject.category, subject.include_steps, subject.skip_steps
        )
        now = self.clock()
        steps = tuple(
            Step(
                id=uuid4(),
                name=definition.title,
                description=definition.description,
                step_type=definition.step_type,
                skippable=definition.skippable,
            )
            for definition in definitions
        )
        session = Session(
            id=uuid4(),
            subject_id=subject.subject_id or uuid4(),
            owner_id=subject.owner_id,
            title=title,
            category=subject.category.strip().lower(),
            steps=steps,
            started_at=now,
            last_activity_at=now,
            status=SessionStatus.STEP_ACTIVE,
        )
        first_step = steps[0]
        self.store.create(session)
        _logger.info(
            "Started session %s (%s, %s steps)",
            session.id,
            session.category,
            len(steps),
        )
        self.broadcaster.publish(
            session.id, events.STEP_STARTED, _step_payload(0, first_step)
        )

        batch = await self._seed_step(session.id, first_step.id)
        return StartResult(
            session_id=session.id,
            subject_id=session.subject_id,
            progress=await self.get_progress(session.id),
            initial_batch=batch,
        )

    async def get_progress(self, session_id: UUID) -> ProgressSnapshot:
        """Return a read-only progress snapshot."""
        return await self.store.get(session_id).call(_progress)

    async def describe(self, session_id: UUID) -> Session:
        """Return a detached copy of the full session state."""
        return await self.store.get(session_id).call(copy.deepcopy)

    async def generate_variants(
        self,
        session_id: UUID,
        step_id: UUID,
        count: int,
        custom_instruction: str | None = None,
    ) -> VariantBatch:
        """Generate ``count`` variants for the current step and append them."""
        if not 1 <= count <= self.max_variant_count:
            raise ValidationError(
                f"Count must be between 1 and {self.max_variant_count}"
            )
        _check_instruction(custom_instruction)
        actor = self.store.get(session_id)
        step_type, context = await actor.call(
            partial(self._prepare_generation, step_id=step_id)
        )
        self.broadcaster.publish(
            session_id,
            events.VARIANTS_GENERATING,
            {"step_id": str(step_id), "count": count},
        )
        try:
            variants = await self.generator.generate(
                step_type, context, count, custom_instruction
            )
        except ProviderFailure as exc:
            self._publish_failure(session_id, step_id, exc)
            raise ProviderFailure(
                exc.args[0], session_id=session_id, step_id=step_id
            ) from exc
        return await actor.call(
            partial(self._commit_batch, step_id=step_id, variants=variants)
        )

    async def upload_variant(  # noqa: PLR0913
        self,
        session_id: UUID,
        step_id: UUID,
        data: bytes,
        declared_type: str,
        size: int,
        filename: str | None = None,
    ) -> VariantBatch:
        """Store user-supplied content and append it as one variant."""
        actor = self.store.get(session_id)
        step_type, _ = await actor.call(
            partial(self._prepare_generation, step_id=step_id)
        )
        try:
            variant = await self.uploads.store_upload(
                session_id, step_id, step_type, data, declared_type, size, filename
            )
        except ProviderFailure as exc:
            self._publish_failure(session_id, step_id, exc)
            raise
        return await actor.call(
            partial(self._commit_batch, step_id=step_id, variants=[variant])
        )

    async def select_variant(
        self,
        session_id: UUID,
        step_id: UUID,
        variant_id: UUID,
        custom_instruction: str | None = None,
    ) -> ProgressSnapshot:
        """Record the choice for the current step and advance."""
        _check_instruction(custom_instruction)
        progress = await self.store.get(session_id).call(
            partial(
                self._select,
                step_id=step_id,
                variant_id=variant_id,
                custom_instruction=custom_instruction,
            )
        )
        return await self._seed_next_step(session_id, progress)

    async def skip(self, session_id: UUID) -> ProgressSnapshot:
        """Complete a skippable current step with its default variant."""
        progress = await self.store.get(session_id).call(self._skip)
        return await self._seed_next_step(session_id, progress)

    async def _seed_step(
        self, session_id: UUID, step_id: UUID
    ) -> VariantBatch | None:
        if self.initial_variant_count <= 0:
            return None
        try:
            return await self.generate_variants(
                session_id, step_id, self.initial_variant_count
            )
        except ProviderFailure as exc:
            _logger.warning("Initial batch failed for %s: %s", session_id, exc)
        except (InvalidStateError, NotFoundError) as exc:
            _logger.info("Initial batch dropped for %s: %s", session_id, exc)
        return None

    async def _seed_next_step(
        self, session_id: UUID, progress: ProgressSnapshot
    ) -> ProgressSnapshot:
        if progress.step_id is None or progress.status not in _ACTIVE:
            return progress
        if await self._seed_step(session_id, progress.step_id) is None:
            return progress
        return await self.get_progress(session_id)

    async def pause(self, session_id: UUID, reason: str = "") -> ProgressSnapshot:
        """Pause an active session; in-flight work still lands."""
        return await self.store.get(session_id).call(
            partial(self._pause, reason=reason)
        )

    async def resume(self, session_id: UUID) -> ProgressSnapshot:
        """Resume a paused session at the same step."""
        return await self.store.get(session_id).call(self._resume)

    async def cancel(self, session_id: UUID) -> ProgressSnapshot:
        """Cancel a session that has not finished yet."""
        return await self.store.get(session_id).call(self._cancel)

    async def complete(self, session_id: UUID) -> Artifact:
        """Assemble the deliverable once every required step is completed."""
        return await self.store.get(session_id).call(self._complete)

    async def preview_variant(
        self, session_id: UUID, step_id: UUID, variant_id: UUID
    ) -> VariantPreview:
        """Return a preview, computing and caching it on first use."""
        return await self.store.get(session_id).call(
            partial(self._preview, step_id=step_id, variant_id=variant_id)
        )

    def _prepare_generation(
        self, session: Session, *, step_id: UUID
    ) -> tuple[StepType, GenerationContext]:
        step = _require_open_step(session, step_id, _ACTIVE)
        return step.step_type, build_context(session)

    def _commit_batch(
        self, session: Session, *, step_id: UUID, variants: list[Variant]
    ) -> VariantBatch:
        try:
            step = _require_open_step(session, step_id, _COMMITTABLE)
        except InvalidStateError:
            _logger.info(
                "Discarded %s stale variants for session %s step %s",
                len(variants),
                session.id,
                step_id,
            )
            self.broadcaster.publish(
                session.id,
                events.VARIANTS_DISCARDED,
                {"step_id": str(step_id), "count": len(variants)},
            )
            raise
        step.variants.extend(variants)
        self._touch(session)
        _logger.info(
            "Appended %s variants to session %s step %s (%s total)",
            len(variants),
            session.id,
            step.id,
            len(step.variants),
        )
        self.broadcaster.publish(
            session.id,
            events.VARIANTS_GENERATED,
            {
                "step_id": str(step.id),
                "variants": [variant_payload(variant) for variant in variants],
            },
        )
        return VariantBatch(
            session_id=session.id,
            step_id=step.id,
            variants=list(variants),
            generated_at=session.last_activity_at,
            total_count=len(step.variants),
        )

    def _select(
        self,
        session: Session,
        *,
        step_id: UUID,
        variant_id: UUID,
        custom_instruction: str | None,
    ) -> ProgressSnapshot:
        step = _require_open_step(session, step_id, _ACTIVE)
        variant = step.find_variant(variant_id)
        if variant is None:
            raise ValidationError(
                f"Variant {variant_id} is not part of step {step_id}"
            )
        self._apply_selection(session, step, variant, custom_instruction)
        return _progress(session)

    def _skip(self, session: Session) -> ProgressSnapshot:
        _require_status(session, _ACTIVE)
        step = session.current_step
        if step is None or not step.skippable:
            raise InvalidStateError("The current step cannot be skipped")
        variant = _default_variant(step)
        if variant is None:
            variant = self.generator.default_variant(step.step_type)
            step.variants.append(variant)
        _logger.info("Skipped step %s of session %s", step.id, session.id)
        self.broadcaster.publish(
            session.id,
            events.STEP_SKIPPED,
            {"step_id": str(step.id), "variant_id": str(variant.id)},
        )
        self._apply_selection(session, step, variant, None)
        return _progress(session)

    def _apply_selection(
        self,
        session: Session,
        step: Step,
        variant: Variant,
        custom_instruction: str | None,
    ) -> None:
        step.selected_variant_id = variant.id
        step.custom_instruction = custom_instruction
        step.completed = True
        session.final_choices[step.id] = variant.id
        session.status = SessionStatus.STEP_COMPLETED
        self._touch(session)
        _logger.info(
            "Session %s step %s completed with %s", session.id, step.id, variant.id
        )
        self.broadcaster.publish(
            session.id,
            events.STEP_COMPLETED,
            {"step_id": str(step.id), "selected_variant": variant_payload(variant)},
        )

        session.current_step_index += 1
        next_step = session.current_step
        if next_step is None:
            session.status = SessionStatus.ALL_STEPS_COMPLETED
            self._complete(session)
            return
        session.status = SessionStatus.STEP_ACTIVE
        self.broadcaster.publish(
            session.id,
            events.STEP_STARTED,
            _step_payload(session.current_step_index, next_step),
        )

    def _pause(self, session: Session, *, reason: str) -> ProgressSnapshot:
        _require_status(session, _ACTIVE)
        session.status = SessionStatus.PAUSED
        session.is_active = False
        self._touch(session)
        _logger.info("Paused session %s: %s", session.id, reason or "no reason")
        self.broadcaster.publish(
            session.id, events.GENERATION_PAUSED, {"reason": reason}
        )
        return _progress(session)

    def _resume(self, session: Session) -> ProgressSnapshot:
        _require_status(session, frozenset({SessionStatus.PAUSED}))
        session.status = SessionStatus.STEP_ACTIVE
        session.is_active = True
        self._touch(session)
        _logger.info(
            "Resumed session %s at step %s", session.id, session.current_step_index
        )
        self.broadcaster.publish(
            session.id,
            events.GENERATION_RESUMED,
            {"from_step": session.current_step_index},
        )
        return _progress(session)

    def _cancel(self, session: Session) -> ProgressSnapshot:
        if session.is_terminal:
            raise InvalidStateError(
                f"Session {session.id} is already {session.status}"
            )
        session.status = SessionStatus.CANCELLED
        session.is_active = False
        session.finished_at = self.clock()
        self._touch(session)
        _logger.info("Cancelled session %s", session.id)
        self.broadcaster.publish(session.id, events.GENERATION_CANCELLED, {})
        return _progress(session)

    def _complete(self, session: Session) -> Artifact:
        if session.status is SessionStatus.COMPLETED and session.artifact is not None:
            return session.artifact
        if session.is_terminal or session.status is SessionStatus.PAUSED:
            raise InvalidStateError(f"Session {session.id} is {session.status}")
        if not session.required_steps_completed():
            raise InvalidStateError("Required steps are not completed yet")

        context = build_context(session)
        session.status = SessionStatus.ASSEMBLING
        result = self.assembler.assemble(session.id, context, session.category)
        if result.is_placeholder:
            session.diagnostics.extend(result.diagnostics)
            _logger.warning(
                "Session %s completed with a placeholder build", session.id
            )
        artifact = Artifact(
            session_id=session.id,
            title=result.title,
            archetype=result.archetype,
            files=result.files,
            context=context,
            is_placeholder=result.is_placeholder,
            diagnostics=result.diagnostics,
        )
        session.artifact = artifact
        session.status = SessionStatus.COMPLETED
        session.is_active = False
        session.finished_at = self.clock()
        self._touch(session)
        _logger.info("Completed session %s as %s", session.id, artifact.archetype)
        self.broadcaster.publish(
            session.id,
            events.GENERATION_COMPLETED,
            {
                "title": artifact.title,
                "archetype": artifact.archetype,
                "files": sorted(artifact.files),
                "placeholder": artifact.is_placeholder,
            },
        )
        return artifact

    def _preview(
        self, session: Session, *, step_id: UUID, variant_id: UUID
    ) -> VariantPreview:
        step = session.find_step(step_id)
        if step is None:
            raise NotFoundError(f"Step {step_id} not found")
        variant = step.find_variant(variant_id)
        if variant is None:
            raise NotFoundError(f"Variant {variant_id} not found")
        cached = variant.metadata.get("preview")
        if isinstance(cached, VariantPreview):
            return cached
        if variant.preview is not None:
            kind = "image" if variant.preview.startswith("data:image/") else "file"
            preview = VariantPreview(variant.id, kind, variant.preview)
        elif isinstance(variant.content, UploadedContent):
            preview = VariantPreview(variant.id, "file", variant.content.reference)
        else:
            text = json.dumps(content_payload(variant.content), indent=2)
            preview = VariantPreview(variant.id, "text", text)
        variant.metadata["preview"] = preview
        return preview

    def _touch(self, session: Session) -> None:
        session.last_activity_at = self.clock()

    def _publish_failure(
        self, session_id: UUID, step_id: UUID, exc: ProviderFailure
    ) -> None:
        _logger.warning(
            "Provider failure for session %s step %s: %s", session_id, step_id, exc
        )
        self.broadcaster.publish(
            session_id,
            events.ERROR,
            {
                "step_id": str(step_id),
                "message": exc.args[0],
                "code": "provider_failure",
            },
        )


def _check_instruction(instruction: str | None) -> None:
    if instruction is not None and not instruction.strip():
        raise ValidationError("Custom instruction must not be empty")


def _require_status(session: Session, allowed: frozenset[SessionStatus]) -> None:
    if session.status not in allowed:
        raise InvalidStateError(f"Session {session.id} is {session.status}")


def _require_open_step(
    session: Session, step_id: UUID, allowed: frozenset[SessionStatus]
) -> Step:
    step = session.find_step(step_id)
    if step is None:
        raise NotFoundError(f"Step {step_id} not found")
    _require_status(session, allowed)
    if step.completed:
        raise InvalidStateError(f"Step {step_id} is already completed")
    if step is not session.current_step:
        raise InvalidStateError(f"Step {step_id} is not the current step")
    return step


def _default_variant(step: Step) -> Variant | None:
    for variant in step.variants:
        if variant.metadata.get("default"):
            return variant
    for variant in step.variants:
        if variant.provenance is not Provenance.UPLOADED:
            return variant
    return None


def _progress(session: Session) -> ProgressSnapshot:
    step = session.current_step
    completed = sum(1 for candidate in session.steps if candidate.completed)
    awaiting = (
        step is not None
        and bool(step.variants)
        and not step.completed
        and session.status in _COMMITTABLE
    )
    return ProgressSnapshot(
        session_id=session.id,
        status=session.status,
        current_step_index=session.current_step_index,
        total_steps=session.total_steps,
        step_id=step.id if step else None,
        step_name=step.name if step else None,
        step_description=step.description if step else None,
        variant_count=len(step.variants) if step else 0,
        awaiting_selection=awaiting,
        completed_steps=completed,
        percent=round(completed * 100 / session.total_steps),
    )


def variant_payload(variant: Variant) -> dict[str, object]:
    """Return the JSON-ready form of a variant used in events and responses."""
    return {
        "id": str(variant.id),
        "provenance": variant.provenance.value,
        "content": variant.content.model_dump(mode="json"),
        "preview": variant.preview,
        "custom": bool(variant.metadata.get("custom")),
    }


def _step_payload(index: int, step: Step) -> dict[str, object]:
    return {
        "step_index": index,
        "step_id": str(step.id),
        "name": step.name,
        "type": step.step_type.value,
        "skippable": step.skippable,
    }
