"""
Webhook API routes.

Provides endpoints for configuring the webhook destination of an API key
and inspecting delivery history.
"""
import secrets

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, HttpUrl
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookline.config import settings
from hookline.database import AsyncSessionLocal, get_db
from hookline.dependencies.auth import get_api_key
from hookline.models.api_key import ApiKey
from hookline.models.order import ExternalOrder
from hookline.models.webhook import WebhookDelivery
from hookline.services.delivery_store import DeliveryStore


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


class SetWebhookRequest(BaseModel):
    """Request model for setting webhook URL."""
    url: HttpUrl


class DeliveryResponse(BaseModel):
    """Delivery history entry. Never includes secrets or claim state."""
    id: str
    subject_id: str
    event_type: str
    status: str
    attempts: int
    max_attempts: int
    last_response_code: int | None = None
    last_response_snippet: str | None = None
    created_at: str
    last_attempt_at: str | None = None
    next_retry_at: str | None = None
    delivered_at: str | None = None


def delivery_to_response(delivery: WebhookDelivery) -> DeliveryResponse:
    """Convert WebhookDelivery model to DeliveryResponse."""
    return DeliveryResponse(
        id=delivery.id,
        subject_id=delivery.subject_id,
        event_type=delivery.event_type.value,
        status=delivery.status.value,
        attempts=delivery.attempts,
        max_attempts=delivery.max_attempts,
        last_response_code=delivery.last_response_code,
        last_response_snippet=delivery.last_response_snippet,
        created_at=delivery.created_at.isoformat(),
        last_attempt_at=delivery.last_attempt_at.isoformat() if delivery.last_attempt_at else None,
        next_retry_at=delivery.next_retry_at.isoformat() if delivery.next_retry_at else None,
        delivered_at=delivery.delivered_at.isoformat() if delivery.delivered_at else None,
    )


def get_delivery_store() -> DeliveryStore:
    """Dependency providing the delivery store."""
    return DeliveryStore(AsyncSessionLocal, claim_lease_seconds=settings.WEBHOOK_CLAIM_LEASE_SECONDS)


async def ensure_order_owned(db: AsyncSession, order_id: str, api_key: ApiKey) -> None:
    """Raise 404 unless the order belongs to the API key."""
    stmt = select(ExternalOrder.id).where(
        ExternalOrder.id == order_id,
        ExternalOrder.api_key_id == api_key.id
    )
    result = await db.execute(stmt)
    if result.scalar_one_or_none() is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found"
        )


@router.post("/", response_model=dict)
async def set_webhook(
    request: SetWebhookRequest,
    api_key: ApiKey = Depends(get_api_key),
    db: AsyncSession = Depends(get_db)
):
    """
    Set webhook URL for the API key.

    A new signing secret is generated on every call and returned only
    once. Deliveries already queued are signed with the new secret from
    their next attempt on.
    """
    api_key.webhook_url = str(request.url)
    api_key.webhook_secret = secrets.token_hex(32)
    await db.commit()

    return {
        "message": "Webhook configured successfully",
        "url": api_key.webhook_url,
        "secret": api_key.webhook_secret,
    }


@router.get("/", response_model=dict)
async def get_webhook(api_key: ApiKey = Depends(get_api_key)):
    """Get current webhook configuration for the API key."""
    return {
        "url": api_key.webhook_url,
        "configured": api_key.webhook_url is not None
    }


@router.delete("/", response_model=dict)
async def delete_webhook(
    api_key: ApiKey = Depends(get_api_key),
    db: AsyncSession = Depends(get_db)
):
    """Remove webhook configuration for the API key."""
    api_key.webhook_url = None
    api_key.webhook_secret = None
    await db.commit()

    return {"message": "Webhook removed successfully"}


@router.get("/deliveries", response_model=list[DeliveryResponse])
async def list_deliveries(
    subject_id: str = Query(..., description="Order ID"),
    limit: int = Query(50, ge=1, le=500),
    api_key: ApiKey = Depends(get_api_key),
    db: AsyncSession = Depends(get_db),
    store: DeliveryStore = Depends(get_delivery_store)
):
    """List webhook deliveries for an order, most recent first."""
    await ensure_order_owned(db, subject_id, api_key)

    deliveries = await store.list_deliveries(subject_id, limit=limit)
    return [delivery_to_response(delivery) for delivery in deliveries]


@router.get("/deliveries/{delivery_id}", response_model=DeliveryResponse)
async def get_delivery(
    delivery_id: str,
    api_key: ApiKey = Depends(get_api_key),
    db: AsyncSession = Depends(get_db),
    store: DeliveryStore = Depends(get_delivery_store)
):
    """Get a single webhook delivery."""
    delivery = await store.get(delivery_id)
    if delivery is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Delivery not found"
        )

    await ensure_order_owned(db, delivery.subject_id, api_key)
    return delivery_to_response(delivery)
