"""
Destination lookup.

Resolves where webhooks for a subject go. Orders are tied to the API key
they were created with; the key holds the webhook URL and secret.
"""
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookline.models.api_key import ApiKey
from hookline.models.order import ExternalOrder


@dataclass(frozen=True)
class Destination:
    """Where to send webhooks for a subject."""
    url: str
    secret_ref: str | None
    # Subject fields included in every payload (orderNumber, status)
    context: dict[str, Any] = field(default_factory=dict)


class DestinationResolver(Protocol):
    """Looks up destinations and their current signing secrets."""

    async def resolve(self, subject_id: str) -> Destination | None:
        ...

    async def get_secret(self, secret_ref: str | None) -> str | None:
        ...


class ApiKeyDestinationResolver:
    """Resolves destinations through the order's API key."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def resolve(self, subject_id: str) -> Destination | None:
        """
        Get the destination for an order.

        Returns None when the order is unknown, has no active API key, or
        the key has no webhook URL configured.
        """
        stmt = (
            select(ExternalOrder, ApiKey)
            .join(ApiKey, ExternalOrder.api_key_id == ApiKey.id)
            .where(ExternalOrder.id == subject_id)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            row = result.first()

        if row is None:
            return None

        order, api_key = row
        if not api_key.is_active or not api_key.webhook_url:
            return None

        return Destination(
            url=api_key.webhook_url,
            secret_ref=api_key.id,
            context={"orderNumber": order.order_number, "status": order.status},
        )

    async def get_secret(self, secret_ref: str | None) -> str | None:
        """
        Get the current webhook secret for an API key.

        Called on every attempt so a rotated secret is picked up by retries.
        """
        if secret_ref is None:
            return None

        stmt = select(ApiKey.webhook_secret).where(ApiKey.id == secret_ref)
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return result.scalar_one_or_none()
