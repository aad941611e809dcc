"""Shared test fixtures."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

import pytest

from game_cocreator.config import Settings
from game_cocreator.containers import AppContainer
from game_cocreator.services.assembler import AssetAssembler
from game_cocreator.services.catalog import StepTemplateCatalog
from game_cocreator.services.events import EventBroadcaster, EventPublisher
from game_cocreator.services.generation import (
    ContentClient,
    ProviderVariantGenerator,
)
from game_cocreator.services.sessions import SessionController
from game_cocreator.services.store import SessionStore, utc_now
from game_cocreator.services.uploads import UploadHandler, UploadStore


def _fake_value(name: str, schema: dict[str, object], index: int) -> object:
    kind = schema.get("type")
    if kind == "array":
        return [f"{name} {index}"]
    if kind == "integer":
        return 640
    return f"{name} {index}"


@dataclass
class FakeContentClient(ContentClient):
    """Fake content client that fills the requested schema with stub values.

    When ``gate`` is set, every call waits for it before answering.
    """

    gate: asyncio.Event | None = None
    calls: list[dict[str, object]] = field(default_factory=list)

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
        self.calls.append({"schema_name": schema_name, "prompt": prompt})
        if self.gate is not None:
            await self.gate.wait()
        count = int(prompt.split("Propose ", 1)[1].split(" ", 1)[0])
        properties = schema["properties"]["variants"]["items"]["properties"]
        return {
            "variants": [
                {
                    name: _fake_value(name, field_schema, index)
                    for name, field_schema in properties.items()
                }
                for index in range(count)
            ]
        }


@dataclass
class FailingContentClient(ContentClient):
    """Content client that always raises."""

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
        raise RuntimeError("provider timeout")


@dataclass
class InMemoryUploadStore(UploadStore):
    """In-memory upload store for tests."""

    objects: dict[str, tuple[bytes, str]] = field(default_factory=dict)
    fail: bool = False

    def store(self, path: str, data: bytes, content_type: str) -> str:
        if self.fail:
            raise RuntimeError("bucket unavailable")
        self.objects[path] = (data, content_type)
        return f"memory://{path}"


@dataclass
class RecordingEventPublisher(EventPublisher):
    """Publisher that records every delivered event."""

    events: list[tuple[UUID, str, dict[str, object]]] = field(default_factory=list)

    async def publish(
        self, session_id: UUID, event: str, payload: dict[str, object]
    ) -> None:
        self.events.append((session_id, event, payload))

    def names(self) -> list[str]:
        return [name for _, name, _ in self.events]


@dataclass
class FailingEventPublisher(EventPublisher):
    """Publisher whose transport is always down."""

    async def publish(
        self, session_id: UUID, event: str, payload: dict[str, object]
    ) -> None:
        raise RuntimeError("subscriber unreachable")


def build_controller(  # noqa: PLR0913
    content_client: ContentClient | None = None,
    publisher: EventPublisher | None = None,
    upload_store: UploadStore | None = None,
    store: SessionStore | None = None,
    assembler: AssetAssembler | None = None,
    initial_variant_count: int = 3,
    clock: Callable[[], datetime] = utc_now,
) -> SessionController:
    """Wire a controller from fakes; defaults generate three variants on start."""
    catalog = StepTemplateCatalog()
    return SessionController(
        catalog=catalog,
        generator=ProviderVariantGenerator(
            client=content_client or FakeContentClient(), model="test-model"
        ),
        uploads=UploadHandler(
            store=upload_store or InMemoryUploadStore(), catalog=catalog
        ),
        store=store or SessionStore(clock=clock),
        assembler=assembler or AssetAssembler(),
        broadcaster=EventBroadcaster(publisher or RecordingEventPublisher()),
        initial_variant_count=initial_variant_count,
        clock=clock,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        openai_api_key="openai-key",
        supabase_url="https://example.supabase.co",
        supabase_service_key="service-key",
        admin_token="admin-token",
    )


@pytest.fixture
def publisher() -> RecordingEventPublisher:
    return RecordingEventPublisher()


def container_for(settings: Settings, controller: SessionController) -> AppContainer:
    """Wrap a controller built from fakes in an application container."""

    async def close_resources() -> None:
        await controller.broadcaster.drain()
        await controller.store.close()

    return AppContainer(
        settings=settings,
        catalog=controller.catalog,
        generator=controller.generator,
        uploads=controller.uploads,
        broadcaster=controller.broadcaster,
        store=controller.store,
        assembler=controller.assembler,
        controller=controller,
        close_resources=close_resources,
    )


@pytest.fixture
def container(settings: Settings, publisher: RecordingEventPublisher) -> AppContainer:
    return container_for(settings, build_controller(publisher=publisher))
