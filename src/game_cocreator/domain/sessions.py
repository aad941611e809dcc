"""Domain models for interactive generation sessions."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from uuid import UUID

from game_cocreator.domain.content import GenerationContext, StepContent, StepType


class Provenance(StrEnum):
    """Origin of a variant."""

    GENERATED = "generated"
    UPLOADED = "uploaded"
    CUSTOM_PROMPT = "custom-prompt"


class SessionStatus(StrEnum):
    """Lifecycle states of a session."""

    INITIALIZING = "initializing"
    STEP_ACTIVE = "step_active"
    STEP_COMPLETED = "step_completed"
    PAUSED = "paused"
    ALL_STEPS_COMPLETED = "all_steps_completed"
    ASSEMBLING = "assembling"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.CANCELLED, SessionStatus.FAILED}
)


@dataclass(frozen=True)
class Variant:
    """One candidate for a step. Only ``metadata`` may gain annotations."""

    id: UUID
    provenance: Provenance
    content: StepContent
    preview: str | None = None
    metadata: dict[str, object] = field(default_factory=dict)


@dataclass
class Step:
    """One ordered stage of a session."""

    id: UUID
    name: str
    description: str
    step_type: StepType
    skippable: bool
    variants: list[Variant] = field(default_factory=list)
    selected_variant_id: UUID | None = None
    custom_instruction: str | None = None
    completed: bool = False

    def find_variant(self, variant_id: UUID) -> Variant | None:
        """Return a variant of this step by id, if present."""
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None

    @property
    def selected_variant(self) -> Variant | None:
        if self.selected_variant_id is None:
            return None
        return self.find_variant(self.selected_variant_id)


@dataclass(frozen=True)
class Artifact:
    """Final deliverable assembled from a completed session."""

    session_id: UUID
    title: str
    archetype: str
    files: dict[str, str]
    context: GenerationContext
    is_placeholder: bool = False
    diagnostics: tuple[str, ...] = ()


@dataclass
class Session:
    """One interactive generation workflow instance."""

    id: UUID
    subject_id: UUID
    owner_id: str | None
    title: str
    category: str
    steps: tuple[Step, ...]
    started_at: datetime
    last_activity_at: datetime
    current_step_index: int = 0
    status: SessionStatus = SessionStatus.INITIALIZING
    is_active: bool = True
    final_choices: dict[UUID, UUID] = field(default_factory=dict)
    artifact: Artifact | None = None
    diagnostics: list[str] = field(default_factory=list)
    finished_at: datetime | None = None

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def current_step(self) -> Step | None:
        if 0 <= self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def find_step(self, step_id: UUID) -> Step | None:
        """Return a step by id, if present."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def required_steps_completed(self) -> bool:
        """Return True when every non-skippable step is completed."""
        return all(step.completed for step in self.steps if not step.skippable)


@dataclass(frozen=True)
class SubjectSpec:
    """Request to start a session for one deliverable."""

    title: str
    description: str = ""
    category: str = "platformer"
    owner_id: str | None = None
    subject_id: UUID | None = None
    include_steps: tuple[StepType, ...] | None = None
    skip_steps: tuple[StepType, ...] = ()


@dataclass(frozen=True)
class VariantBatch:
    """Variants appended to a step by one request."""

    session_id: UUID
    step_id: UUID
    variants: list[Variant]
    generated_at: datetime
    total_count: int


@dataclass(frozen=True)
class ProgressSnapshot:
    """Read-only view of where a session stands."""

    session_id: UUID
    status: SessionStatus
    current_step_index: int
    total_steps: int
    step_id: UUID | None
    step_name: str | None
    step_description: str | None
    variant_count: int
    awaiting_selection: bool
    completed_steps: int
    percent: int


@dataclass(frozen=True)
class VariantPreview:
    """Preview representation of a variant."""

    variant_id: UUID
    kind: str
    data: str
