"""Context built from a session's completed steps."""

from game_cocreator.domain.content import GenerationContext, content_payload
from game_cocreator.domain.sessions import Session


def build_context(session: Session) -> GenerationContext:
    """Map step type to selected content, in step order, for completed steps."""
    context: GenerationContext = {}
    for step in session.steps:
        if not step.completed:
            continue
        variant = step.selected_variant
        if variant is not None:
            context[step.step_type] = variant.content
    return context


def context_payload(context: GenerationContext) -> dict[str, object]:
    """Serialize a context for prompts and event payloads."""
    return {
        step_type.value: content_payload(content)
        for step_type, content in context.items()
    }
