"""Step templates and per-step guidelines for each subject category."""

import logging
from dataclasses import dataclass, field

from game_cocreator.domain.content import StepType
from game_cocreator.domain.errors import ValidationError

DEFAULT_CATEGORY = "platformer"
MAX_UPLOAD_BYTES = 10 * 1024 * 1024

_logger = logging.getLogger(__name__)

_MIB = 1024 * 1024


@dataclass(frozen=True)
class StepDefinition:
    """Template for one step of a session."""

    step_type: StepType
    title: str
    description: str
    skippable: bool = False


@dataclass(frozen=True)
class StepGuideline:
    """Upload limits and instruction hints for a step type."""

    step_type: StepType
    accepted_formats: tuple[str, ...] = ()
    max_size_bytes: int = 0
    recommended_dimensions: tuple[int, int] | None = None
    upload_description: str = ""
    placeholder: str = ""
    examples: tuple[str, ...] = ()
    tips: tuple[str, ...] = ()

    @property
    def accepts_uploads(self) -> bool:
        return bool(self.accepted_formats)


_CHARACTER = StepDefinition(
    StepType.CHARACTER, "Main character", "Create the hero of the game."
)
_MECHANICS = StepDefinition(
    StepType.MECHANICS, "Game mechanics", "Define the core gameplay loop."
)
_LEVEL = StepDefinition(StepType.LEVEL, "Level design", "Lay out the first level.")
_GRAPHICS = StepDefinition(
    StepType.GRAPHICS, "Visual style", "Pick an art style and palette.", True
)
_SOUND = StepDefinition(
    StepType.SOUND, "Sound design", "Choose music and sound direction.", True
)
_UI = StepDefinition(StepType.UI, "Interface", "Design the in-game interface.", True)
_STORY = StepDefinition(
    StepType.STORY, "Story", "Write the premise and key story beats.", True
)

_BASE_STEPS = (_CHARACTER, _MECHANICS, _LEVEL, _GRAPHICS, _SOUND, _UI)

TEMPLATES: dict[str, tuple[StepDefinition, ...]] = {
    "platformer": _BASE_STEPS,
    "arcade": _BASE_STEPS,
    "racing": _BASE_STEPS,
    "puzzle": (_MECHANICS, _LEVEL, _GRAPHICS, _SOUND, _UI),
    "strategy": (_MECHANICS, _CHARACTER, _LEVEL, _GRAPHICS, _UI, _SOUND),
    "rpg": (_CHARACTER, _STORY, _MECHANICS, _LEVEL, _GRAPHICS, _SOUND, _UI),
}

GUIDELINES: dict[StepType, StepGuideline] = {
    StepType.CHARACTER: StepGuideline(
        step_type=StepType.CHARACTER,
        accepted_formats=("image/png", "image/jpeg", "image/gif", "image/webp"),
        max_size_bytes=5 * _MIB,
        recommended_dimensions=(64, 64),
        upload_description="Character sprite or concept art, PNG with transparency.",
        placeholder="Describe the character: looks, abilities, style...",
        examples=(
            "A ninja robot in blue armor with energy blades",
            "A space pilot with a jetpack",
        ),
        tips=("Mention the color scheme", "List special abilities or gear"),
    ),
    StepType.MECHANICS: StepGuideline(
        step_type=StepType.MECHANICS,
        placeholder="Describe the mechanics: controls, goals, twists...",
        examples=(
            "Platform jumping with double jumps and wall jumps",
            "Sliding block puzzles with switches",
        ),
        tips=("Describe the core loop", "Name what makes it unique"),
    ),
    StepType.LEVEL: StepGuideline(
        step_type=StepType.LEVEL,
        accepted_formats=("image/png", "image/jpeg", "text/plain", "application/json"),
        max_size_bytes=2 * _MIB,
        upload_description="Level sketch, concept art or a JSON level description.",
        placeholder="Describe the level: theme, obstacles, enemies...",
        examples=("A forest with moving platforms and spikes",),
        tips=("Describe the atmosphere", "List obstacle and enemy types"),
    ),
    StepType.GRAPHICS: StepGuideline(
        step_type=StepType.GRAPHICS,
        accepted_formats=("image/png", "image/jpeg", "image/gif"),
        max_size_bytes=5 * _MIB,
        upload_description="Style references or finished sprites.",
        placeholder="Describe the visual style: colors, mood, technique...",
        examples=("16-bit pixel art with neon colors",),
        tips=("Name an art style", "Give a palette"),
    ),
    StepType.SOUND: StepGuideline(
        step_type=StepType.SOUND,
        accepted_formats=("audio/wav", "audio/mp3", "audio/mpeg", "audio/ogg"),
        max_size_bytes=10 * _MIB,
        upload_description="Background music or sound effects.",
        placeholder="Describe the sound: music style, atmosphere...",
        examples=("Fast chiptune", "Epic orchestral score"),
        tips=("Give a mood and tempo",),
    ),
    StepType.UI: StepGuideline(
        step_type=StepType.UI,
        accepted_formats=("image/png", "image/jpeg"),
        max_size_bytes=3 * _MIB,
        upload_description="Interface mockups or UI elements.",
        placeholder="Describe the interface: style, element placement...",
        examples=("Minimal flat buttons", "Retro pixel fonts"),
        tips=("Describe the layout", "Give a color scheme"),
    ),
    StepType.STORY: StepGuideline(
        step_type=StepType.STORY,
        placeholder="Describe the story: premise, setting, conflict...",
        examples=("A lighthouse keeper chasing a stolen sunrise",),
        tips=("Keep the premise to one sentence",),
    ),
}


@dataclass
class StepTemplateCatalog:
    """Pure lookup from subject category to ordered step definitions."""

    templates: dict[str, tuple[StepDefinition, ...]] = field(
        default_factory=lambda: dict(TEMPLATES)
    )
    guidelines: dict[StepType, StepGuideline] = field(
        default_factory=lambda: dict(GUIDELINES)
    )
    default_category: str = DEFAULT_CATEGORY
    enabled_categories: set[str] | None = None

    def categories(self) -> list[str]:
        """Return the categories that resolve to their own template."""
        return sorted(
            category
            for category in self.templates
            if self.enabled_categories is None or category in self.enabled_categories
        )

    def resolve(
        self,
        category: str,
        include_steps: tuple[StepType, ...] | None = None,
        skip_steps: tuple[StepType, ...] = (),
    ) -> list[StepDefinition]:
        """Return the step list for a category with per-request customization.

        Unknown or disabled categories fall back to the default template.
        ``include_steps`` keeps only the named step types (template order is
        preserved) and ``skip_steps`` marks the named types skippable.
        """
        key = category.strip().lower()
        if key not in self.categories():
            _logger.info(
                "Unknown category %r, using %s template",
                category,
                self.default_category,
            )
            key = self.default_category
        definitions = list(self.templates[key])
        known = {definition.step_type for definition in definitions}

        if include_steps is not None:
            unknown = [step for step in include_steps if step not in known]
            if unknown:
                raise ValidationError(
                    f"Steps not in the {key} template: {', '.join(unknown)}"
                )
            definitions = [d for d in definitions if d.step_type in include_steps]
        for step_type in skip_steps:
            if step_type not in known:
                raise ValidationError(f"Cannot skip unknown step {step_type}")
        if not definitions:
            raise ValidationError("A session needs at least one step")

        return [
            StepDefinition(
                step_type=d.step_type,
                title=d.title,
                description=d.description,
                skippable=d.skippable or d.step_type in skip_steps,
            )
            for d in definitions
        ]

    def guideline(self, step_type: StepType) -> StepGuideline:
        """Return upload and instruction guidance for a step type."""
        return self.guidelines.get(step_type, StepGuideline(step_type=step_type))
