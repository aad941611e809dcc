"""Webhook transport for session events."""

from dataclasses import dataclass
from uuid import UUID

import httpx

from game_cocreator.services.events import EventPublisher


@dataclass
class HttpxWebhookEventPublisher(EventPublisher):
    """Posts each event as JSON to a subscriber URL."""

    url: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, url: str) -> "HttpxWebhookEventPublisher":
        """Create a publisher with a managed httpx session."""
        return cls(url=url, http_client=httpx.AsyncClient())

    async def publish(
        self, session_id: UUID, event: str, payload: dict[str, object]
    ) -> None:
        """Deliver one event to the webhook."""
        response = await self.http_client.post(
            self.url,
            json={"session_id": str(session_id), "event": event, "payload": payload},
            timeout=10,
        )
        response.raise_for_status()

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
