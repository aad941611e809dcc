"""Best-effort publication of session lifecycle events."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID

_logger = logging.getLogger(__name__)

STEP_STARTED = "step:started"
VARIANTS_GENERATING = "variants:generating"
VARIANTS_GENERATED = "variants:generated"
VARIANTS_DISCARDED = "variants:discarded"
STEP_COMPLETED = "step:completed"
STEP_SKIPPED = "step:skipped"
GENERATION_PAUSED = "generation:paused"
GENERATION_RESUMED = "generation:resumed"
GENERATION_COMPLETED = "generation:completed"
GENERATION_CANCELLED = "generation:cancelled"
ERROR = "error"


class EventPublisher(Protocol):
    """Transport that delivers events to subscribers."""

    async def publish(
        self, session_id: UUID, event: str, payload: dict[str, object]
    ) -> None:
        """Deliver one event."""


@dataclass
class LoggingEventPublisher(EventPublisher):
    """Publisher that only logs events, used when no transport is configured."""

    async def publish(
        self, session_id: UUID, event: str, payload: dict[str, object]
    ) -> None:
        _logger.info("Event %s for session %s", event, session_id)


@dataclass
class EventBroadcaster:
    """Fire-and-forget event fan-out that never blocks the caller."""

    publisher: EventPublisher
    _pending: set[asyncio.Task[None]] = field(default_factory=set, repr=False)

    def publish(
        self, session_id: UUID, event: str, payload: dict[str, object] | None = None
    ) -> None:
        """Schedule delivery of an event at most once."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _logger.warning("Dropping event %s: no running event loop", event)
            return
        task = loop.create_task(self._deliver(session_id, event, payload or {}))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(
        self, session_id: UUID, event: str, payload: dict[str, object]
    ) -> None:
        try:
            await self.publisher.publish(session_id, event, payload)
        except Exception as exc:
            _logger.warning(
                "Event %s for session %s not delivered: %s", event, session_id, exc
            )

    async def drain(self) -> None:
        """Wait for events already scheduled to finish delivery."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
