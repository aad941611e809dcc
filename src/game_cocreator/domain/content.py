"""Typed content payloads carried by variants, one schema per step type."""

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class StepType(StrEnum):
    """Creative dimensions a wizard step can cover."""

    CHARACTER = "character"
    MECHANICS = "mechanics"
    LEVEL = "level"
    GRAPHICS = "graphics"
    SOUND = "sound"
    UI = "ui"
    STORY = "story"


class _Content(BaseModel):
    model_config = ConfigDict(frozen=True)


class CharacterContent(_Content):
    """Main character proposal."""

    kind: Literal["character"] = "character"
    name: str
    description: str
    appearance: str
    abilities: list[str] = Field(default_factory=list)
    primary_color: str = "#3498db"
    style: str = "pixel art"


class MechanicsContent(_Content):
    """Core gameplay proposal."""

    kind: Literal["mechanics"] = "mechanics"
    core_loop: str
    controls: list[str] = Field(default_factory=list)
    objectives: list[str] = Field(default_factory=list)
    progression: str = ""
    difficulty: str = "normal"
    special_features: list[str] = Field(default_factory=list)


class LevelContent(_Content):
    """Level layout proposal."""

    kind: Literal["level"] = "level"
    layout: str
    theme: str
    obstacles: list[str] = Field(default_factory=list)
    collectibles: list[str] = Field(default_factory=list)
    enemies: list[str] = Field(default_factory=list)
    background_elements: list[str] = Field(default_factory=list)
    width: int = Field(default=800, gt=0)
    height: int = Field(default=600, gt=0)


class GraphicsContent(_Content):
    """Visual style proposal."""

    kind: Literal["graphics"] = "graphics"
    art_style: str
    color_palette: list[str] = Field(default_factory=list)
    theme: str = ""
    mood: str = ""


class SoundContent(_Content):
    """Audio direction proposal."""

    kind: Literal["sound"] = "sound"
    style: str
    mood: str = ""
    instruments: list[str] = Field(default_factory=list)
    tempo: str = "medium"


class UIContent(_Content):
    """Interface design proposal."""

    kind: Literal["ui"] = "ui"
    style: str
    layout: str = ""
    color_scheme: str = ""
    components: list[str] = Field(default_factory=list)


class StoryContent(_Content):
    """Narrative proposal."""

    kind: Literal["story"] = "story"
    premise: str
    setting: str = ""
    conflict: str = ""
    beats: list[str] = Field(default_factory=list)


class UploadedContent(_Content):
    """Externally supplied file stored by the upload collaborator."""

    kind: Literal["upload"] = "upload"
    reference: str
    content_type: str
    size: int = Field(ge=0)
    filename: str | None = None


StepContent = Annotated[
    CharacterContent
    | MechanicsContent
    | LevelContent
    | GraphicsContent
    | SoundContent
    | UIContent
    | StoryContent
    | UploadedContent,
    Field(discriminator="kind"),
]

CONTENT_MODELS: dict[StepType, type[_Content]] = {
    StepType.CHARACTER: CharacterContent,
    StepType.MECHANICS: MechanicsContent,
    StepType.LEVEL: LevelContent,
    StepType.GRAPHICS: GraphicsContent,
    StepType.SOUND: SoundContent,
    StepType.UI: UIContent,
    StepType.STORY: StoryContent,
}

GenerationContext = dict[StepType, StepContent]


def content_payload(content: StepContent) -> dict[str, object]:
    """Return JSON-ready content without the discriminator."""
    return content.model_dump(mode="json", exclude={"kind"})
