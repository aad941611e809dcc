"""Registry of live sessions, each owned by one coordinating task."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TypeVar
from uuid import UUID

from game_cocreator.domain.errors import NotFoundError
from game_cocreator.domain.sessions import Session

_logger = logging.getLogger(__name__)

T = TypeVar("T")

_Command = tuple[Callable[[Session], object], asyncio.Future]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class SessionActor:
    """Serializes every read and write of one session through a single task.

    Commands are plain functions applied to the session one at a time, so a
    command never observes another command's partial writes.
    """

    def __init__(self, session: Session) -> None:
        self.session_id = session.id
        self._session = session
        self._inbox: asyncio.Queue[_Command | None] = asyncio.Queue()
        self._closed = False
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"session-{session.id}"
        )

    @property
    def closed(self) -> bool:
        return self._closed

    async def call(self, command: Callable[[Session], T]) -> T:
        """Run a command against the session and return its result."""
        if self._closed:
            raise NotFoundError(f"Session {self.session_id} not found")
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        await self._inbox.put((command, future))
        return await future

    async def stop(self) -> None:
        """Finish queued commands, then stop; later calls raise NotFoundError."""
        if self._closed:
            return
        self._closed = True
        await self._inbox.put(None)
        await self._task
        while not self._inbox.empty():
            item = self._inbox.get_nowait()
            if item is not None and not item[1].done():
                item[1].set_exception(
                    NotFoundError(f"Session {self.session_id} not found")
                )

    async def _run(self) -> None:
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            command, future = item
            if future.done():
                continue
            try:
                result = command(self._session)
            except Exception as exc:
                future.set_exception(exc)
            else:
                future.set_result(result)


@dataclass
class SessionStore:
    """Owns session actors and evicts idle finished sessions."""

    ttl_seconds: float = 3600
    cleanup_interval_seconds: float = 60
    idle_timeout_seconds: float = 86400
    clock: Callable[[], datetime] = utc_now
    _actors: dict[UUID, SessionActor] = field(default_factory=dict, repr=False)
    _cleanup_task: asyncio.Task[None] | None = field(default=None, repr=False)

    def create(self, session: Session) -> SessionActor:
        """Register a new session and start its coordinating task."""
        actor = SessionActor(session)
        self._actors[session.id] = actor
        return actor

    def get(self, session_id: UUID) -> SessionActor:
        """Return the actor for a session or raise NotFoundError."""
        actor = self._actors.get(session_id)
        if actor is None or actor.closed:
            raise NotFoundError(f"Session {session_id} not found")
        return actor

    def session_ids(self) -> list[UUID]:
        return list(self._actors)

    async def evict(self, session_id: UUID) -> None:
        """Drop a session; in-flight work is discarded when it returns."""
        actor = self._actors.pop(session_id, None)
        if actor is not None:
            await actor.stop()
            _logger.info("Evicted session %s", session_id)

    async def evict_expired(self) -> list[UUID]:
        """Evict finished sessions idle for longer than the TTL."""
        cutoff = self.clock() - timedelta(seconds=self.ttl_seconds)
        expired: list[UUID] = []
        for session_id, actor in list(self._actors.items()):
            try:
                is_expired = await actor.call(
                    lambda session: session.is_terminal
                    and session.last_activity_at <= cutoff
                )
            except NotFoundError:
                continue
            if is_expired:
                await self.evict(session_id)
                expired.append(session_id)
        return expired

    async def idle_session_ids(self) -> list[UUID]:
        """Return unfinished sessions with no activity for the idle timeout."""
        cutoff = self.clock() - timedelta(seconds=self.idle_timeout_seconds)
        idle: list[UUID] = []
        for session_id, actor in list(self._actors.items()):
            try:
                is_idle = await actor.call(
                    lambda session: not session.is_terminal
                    and session.last_activity_at <= cutoff
                )
            except NotFoundError:
                continue
            if is_idle:
                idle.append(session_id)
        return idle

    def start_cleanup(
        self, sweep: Callable[[], Awaitable[object]] | None = None
    ) -> None:
        """Start the periodic cleanup loop on the running event loop.

        ``sweep`` runs on every tick and defaults to ``evict_expired``.
        """
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(
                self._cleanup_loop(sweep or self.evict_expired),
                name="session-cleanup",
            )

    async def close(self) -> None:
        """Stop the cleanup loop and every session task."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None
        for session_id in list(self._actors):
            await self.evict(session_id)

    async def _cleanup_loop(self, sweep: Callable[[], Awaitable[object]]) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_seconds)
            try:
                await sweep()
            except Exception:
                _logger.exception("Session cleanup failed")
