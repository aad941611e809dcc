"""Error kinds raised by the co-creation services."""

from uuid import UUID


class CocreatorError(Exception):
    """Base class for co-creation errors."""


class NotFoundError(CocreatorError):
    """Unknown session, step or variant id."""


class InvalidStateError(CocreatorError):
    """Operation is not legal for the session's current state."""


class ValidationError(CocreatorError):
    """Malformed input such as an empty instruction or oversized upload."""


class ProviderFailure(CocreatorError):
    """A content-generation or storage call failed; nothing was appended."""

    def __init__(
        self,
        message: str,
        *,
        session_id: UUID | None = None,
        step_id: UUID | None = None,
    ) -> None:
        super().__init__(message)
        self.session_id = session_id
        self.step_id = step_id

    def __str__(self) -> str:
        message = super().__str__()
        if self.session_id is None:
            return message
        return f"{message} (session={self.session_id}, step={self.step_id})"


class AssemblyFailure(CocreatorError):
    """Raised inside the assembler; never escapes session completion."""
