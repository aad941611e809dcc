"""Variant generation through a structured-output content client."""

import json
import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import uuid4

import pydantic

from game_cocreator.domain.content import (
    CONTENT_MODELS,
    CharacterContent,
    GenerationContext,
    GraphicsContent,
    LevelContent,
    MechanicsContent,
    SoundContent,
    StepContent,
    StepType,
    StoryContent,
    UIContent,
)
from game_cocreator.domain.errors import ProviderFailure
from game_cocreator.domain.sessions import Provenance, Variant
from game_cocreator.services.context import context_payload

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepCapability:
    """How one step type is described to the content source."""

    step_type: StepType
    brief: str
    fields: dict[str, str]
    default: StepContent

    def item_schema(self) -> dict[str, object]:
        return {
            "type": "object",
            "properties": {
                name: _FIELD_SCHEMAS[kind] for name, kind in self.fields.items()
            },
            "required": list(self.fields),
            "additionalProperties": False,
        }

    def batch_schema(self) -> dict[str, object]:
        return {
            "type": "object",
            "properties": {
                "variants": {"type": "array", "items": self.item_schema()},
            },
            "required": ["variants"],
            "additionalProperties": False,
        }


_FIELD_SCHEMAS: dict[str, dict[str, object]] = {
    "string": {"type": "string"},
    "string[]": {"type": "array", "items": {"type": "string"}},
    "integer": {"type": "integer", "minimum": 1},
}

CAPABILITIES: dict[StepType, StepCapability] = {
    StepType.CHARACTER: StepCapability(
        step_type=StepType.CHARACTER,
        brief="a playable main character",
        fields={
            "name": "string",
            "description": "string",
            "appearance": "string",
            "abilities": "string[]",
            "primary_color": "string",
            "style": "string",
        },
        default=CharacterContent(
            name="Hero",
            description="A brave adventurer.",
            appearance="A small figure in a blue tunic.",
            abilities=["jump"],
        ),
    ),
    StepType.MECHANICS: StepCapability(
        step_type=StepType.MECHANICS,
        brief="the core gameplay mechanics",
        fields={
            "core_loop": "string",
            "controls": "string[]",
            "objectives": "string[]",
            "progression": "string",
            "difficulty": "string",
            "special_features": "string[]",
        },
        default=MechanicsContent(
            core_loop="Run and jump across platforms collecting coins.",
            controls=["arrows", "space"],
            objectives=["collect every coin"],
        ),
    ),
    StepType.LEVEL: StepCapability(
        step_type=StepType.LEVEL,
        brief="a level design",
        fields={
            "layout": "string",
            "theme": "string",
            "obstacles": "string[]",
            "collectibles": "string[]",
            "enemies": "string[]",
            "background_elements": "string[]",
            "width": "integer",
            "height": "integer",
        },
        default=LevelContent(layout="horizontal", theme="grassland"),
    ),
    StepType.GRAPHICS: StepCapability(
        step_type=StepType.GRAPHICS,
        brief="a visual style with a color palette of hex colors",
        fields={
            "art_style": "string",
            "color_palette": "string[]",
            "theme": "string",
            "mood": "string",
        },
        default=GraphicsContent(
            art_style="pixel art",
            color_palette=["#3498db", "#2ecc71", "#2c3e50", "#f1c40f"],
        ),
    ),
    StepType.SOUND: StepCapability(
        step_type=StepType.SOUND,
        brief="a sound and music direction",
        fields={
            "style": "string",
            "mood": "string",
            "instruments": "string[]",
            "tempo": "string",
        },
        default=SoundContent(style="chiptune", mood="cheerful"),
    ),
    StepType.UI: StepCapability(
        step_type=StepType.UI,
        brief="an in-game interface design",
        fields={
            "style": "string",
            "layout": "string",
            "color_scheme": "string",
            "components": "string[]",
        },
        default=UIContent(style="minimal", components=["score", "lives"]),
    ),
    StepType.STORY: StepCapability(
        step_type=StepType.STORY,
        brief="a short game story",
        fields={
            "premise": "string",
            "setting": "string",
            "conflict": "string",
            "beats": "string[]",
        },
        default=StoryContent(premise="A hero sets out to recover a lost treasure."),
    ),
}


class ContentClient(Protocol):
    """Interface for a structured-output content source."""

    async def generate(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        schema_name: str,
        schema: dict[str, object],
        prompt: str,
    ) -> dict[str, object]:
        """Return a payload shaped like ``schema``."""


class VariantGenerator(Protocol):
    """Produces exactly ``count`` variants for a step type or fails."""

    async def generate(
        self,
        step_type: StepType,
        context: GenerationContext,
        count: int,
        instruction: str | None = None,
    ) -> list[Variant]:
        """Return ``count`` new variants or raise ProviderFailure."""

    def default_variant(self, step_type: StepType) -> Variant:
        """Return the provider-declared default for a step type."""


@dataclass
class ProviderVariantGenerator:
    """Variant generator backed by a content client, one capability per type."""

    client: ContentClient
    model: str
    reasoning_effort: str | None = None
    store: bool = False

    async def generate(
        self,
        step_type: StepType,
        context: GenerationContext,
        count: int,
        instruction: str | None = None,
    ) -> list[Variant]:
        """Generate a batch; any failure fails the whole batch."""
        capability = CAPABILITIES[step_type]
        prompt = build_prompt(capability, context, count, instruction)
        try:
            raw = await self.client.generate(
                model=self.model,
                reasoning_effort=self.reasoning_effort,
                store=self.store,
                schema_name=f"{step_type.value}_variants",
                schema=capability.batch_schema(),
                prompt=prompt,
            )
        except Exception as exc:
            _logger.warning("Content client failed for %s: %s", step_type, exc)
            raise ProviderFailure(f"Generating {step_type} variants failed") from exc

        items = raw.get("variants") if isinstance(raw, dict) else None
        if not isinstance(items, list) or len(items) != count:
            received = len(items) if isinstance(items, list) else 0
            raise ProviderFailure(
                f"Expected {count} {step_type} variants, received {received}"
            )
        model = CONTENT_MODELS[step_type]
        try:
            contents = [
                model.model_validate({**item, "kind": step_type.value})
                for item in items
            ]
        except (pydantic.ValidationError, TypeError) as exc:
            raise ProviderFailure(f"Malformed {step_type} variant content") from exc

        provenance = Provenance.CUSTOM_PROMPT if instruction else Provenance.GENERATED
        return [
            Variant(
                id=uuid4(),
                provenance=provenance,
                content=content,
                metadata={
                    "prompt": prompt,
                    "instruction": instruction,
                    "custom": instruction is not None,
                },
            )
            for content in contents
        ]

    def default_variant(self, step_type: StepType) -> Variant:
        """Return the built-in default content as a generated variant."""
        return Variant(
            id=uuid4(),
            provenance=Provenance.GENERATED,
            content=CAPABILITIES[step_type].default,
            metadata={"default": True, "custom": False},
        )


def build_prompt(
    capability: StepCapability,
    context: GenerationContext,
    count: int,
    instruction: str | None,
) -> str:
    """Build the generation prompt for one batch."""
    lines = [
        f"Propose {count} distinct options for {capability.brief} "
        "of a small browser game.",
        f'Return JSON with a "variants" array of exactly {count} items.',
    ]
    if context:
        lines.append(
            "Stay consistent with these earlier choices:\n"
            + json.dumps(context_payload(context), indent=2, ensure_ascii=False)
        )
    if instruction:
        lines.append(f"Follow the user's request: {instruction}")
    return "\n".join(lines)
