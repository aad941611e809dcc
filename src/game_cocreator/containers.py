"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from game_cocreator.adapters.openai_content_client import OpenAIContentClient
from game_cocreator.adapters.supabase_upload_store import SupabaseUploadStore
from game_cocreator.adapters.webhook_event_publisher import (
    HttpxWebhookEventPublisher,
)
from game_cocreator.config import Settings, parse_enabled_categories
from game_cocreator.services.assembler import AssetAssembler
from game_cocreator.services.catalog import StepTemplateCatalog
from game_cocreator.services.events import (
    EventBroadcaster,
    EventPublisher,
    LoggingEventPublisher,
)
from game_cocreator.services.generation import ProviderVariantGenerator
from game_cocreator.services.sessions import SessionController
from game_cocreator.services.store import SessionStore
from game_cocreator.services.uploads import UploadHandler


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    catalog: StepTemplateCatalog
    generator: ProviderVariantGenerator
    uploads: UploadHandler
    broadcaster: EventBroadcaster
    store: SessionStore
    assembler: AssetAssembler
    controller: SessionController
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    catalog = StepTemplateCatalog(
        enabled_categories=parse_enabled_categories(
            resolved_settings.enabled_categories
        )
    )
    content_client = OpenAIContentClient.create(resolved_settings.openai_api_key)
    generator = ProviderVariantGenerator(
        client=content_client,
        model=resolved_settings.openai_model,
        reasoning_effort=resolved_settings.openai_reasoning_effort,
        store=resolved_settings.openai_store,
    )
    uploads = UploadHandler(
        store=SupabaseUploadStore(
            supabase_client, resolved_settings.supabase_upload_bucket
        ),
        catalog=catalog,
    )
    webhook_publisher: HttpxWebhookEventPublisher | None = None
    publisher: EventPublisher
    if resolved_settings.event_webhook_url:
        webhook_publisher = HttpxWebhookEventPublisher.create(
            resolved_settings.event_webhook_url
        )
        publisher = webhook_publisher
    else:
        publisher = LoggingEventPublisher()
    broadcaster = EventBroadcaster(publisher)
    store = SessionStore(
        ttl_seconds=resolved_settings.session_ttl_seconds,
        cleanup_interval_seconds=resolved_settings.cleanup_interval_seconds,
        idle_timeout_seconds=resolved_settings.session_idle_timeout_seconds,
    )
    assembler = AssetAssembler(sdk_script_url=resolved_settings.game_sdk_script_url)
    controller = SessionController(
        catalog=catalog,
        generator=generator,
        uploads=uploads,
        store=store,
        assembler=assembler,
        broadcaster=broadcaster,
        initial_variant_count=resolved_settings.initial_variant_count,
        max_variant_count=resolved_settings.max_variant_count,
    )

    async def close_resources() -> None:
        await broadcaster.drain()
        await store.close()
        await content_client.close()
        if webhook_publisher is not None:
            await webhook_publisher.close()

    return AppContainer(
        settings=resolved_settings,
        catalog=catalog,
        generator=generator,
        uploads=uploads,
        broadcaster=broadcaster,
        store=store,
        assembler=assembler,
        controller=controller,
        close_resources=close_resources,
    )
