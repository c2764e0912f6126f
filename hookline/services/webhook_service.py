"""
Webhook Service

Entry point for business modules: records webhook events and starts their
delivery in the background.
"""
import asyncio
import json
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from hookline.config import settings
from hookline.exceptions import DeliveryRecordError
from hookline.logging_config import get_logger
from hookline.models.base import utc_now
from hookline.models.webhook import WebhookDelivery, WebhookEventType
from hookline.routes.metrics import track_webhook_dispatched, track_webhook_skipped
from hookline.sentry_config import capture_exception
from hookline.services.delivery_executor import DeliveryExecutor
from hookline.services.delivery_store import DeliveryStore
from hookline.services.destination_service import DestinationResolver


def build_payload(
    event_type: WebhookEventType,
    subject_id: str,
    data: dict[str, Any],
    context: dict[str, Any] | None = None,
    now=None,
) -> str:
    """
    Serialize the webhook body.

    The result is stored and sent as-is on every attempt.
    """
    timestamp = (now or utc_now()).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    payload = {
        "event": event_type.value,
        "timestamp": timestamp,
        "data": {
            "subjectId": subject_id,
            **(context or {}),
            **data,
        },
    }
    return json.dumps(payload, default=str, separators=(",", ":"))


class WebhookDispatcher:
    """
    Records webhook events and triggers their first delivery attempt.

    dispatch() returns once the delivery record is committed; the HTTP call
    runs in a background task. Failed attempts are picked up by the retry
    scheduler.
    """

    def __init__(
        self,
        store: DeliveryStore,
        resolver: DestinationResolver,
        executor: DeliveryExecutor,
        max_attempts: int = 5,
    ):
        self.store = store
        self.resolver = resolver
        self.executor = executor
        self.max_attempts = max_attempts
        self._tasks: set[asyncio.Task] = set()

    async def dispatch(
        self,
        subject_id: str,
        event_type: WebhookEventType,
        data: dict[str, Any] | None = None,
    ) -> WebhookDelivery | None:
        """
        Record a webhook event for delivery.

        Args:
            subject_id: Order the event is about
            event_type: Event that happened
            data: Event-specific payload fields

        Returns:
            The created delivery, or None if no destination is configured

        Raises:
            DeliveryRecordError: If the event could not be persisted
        """
        log = get_logger(subject_id=subject_id, event_type=event_type.value)

        try:
            destination = await self.resolver.resolve(subject_id)
        except SQLAlchemyError as e:
            log.error("webhook_destination_lookup_failed", error=str(e))
            raise DeliveryRecordError(subject_id, event_type.value, "destination lookup failed") from e

        if destination is None:
            log.info("webhook_not_configured")
            track_webhook_skipped(event_type.value)
            return None

        payload = build_payload(event_type, subject_id, data or {}, destination.context)

        try:
            delivery = await self.store.create(
                subject_id=subject_id,
                event_type=event_type,
                destination_url=destination.url,
                destination_secret_ref=destination.secret_ref,
                payload=payload,
                max_attempts=self.max_attempts,
            )
        except SQLAlchemyError as e:
            log.error("webhook_record_failed", error=str(e))
            raise DeliveryRecordError(subject_id, event_type.value, "could not store delivery") from e

        log.info("webhook_dispatched", delivery_id=delivery.id)
        track_webhook_dispatched(event_type.value)

        # Send in the background (don't block the caller)
        task = asyncio.create_task(self._first_attempt(delivery.id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        return delivery

    async def _first_attempt(self, delivery_id: str) -> None:
        try:
            await self.executor.deliver(delivery_id)
        except Exception:
            # Record stays PENDING and is picked up by the retry scheduler
            get_logger(delivery_id=delivery_id).exception("webhook_first_attempt_error")
            capture_exception()

    async def drain(self) -> None:
        """Wait for in-flight first attempts to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Helpers for common webhook events

    async def notify_payment_initiated(self, order_id: str, order_details: dict[str, Any]):
        return await self.dispatch(order_id, WebhookEventType.PAYMENT_INITIATED, {
            "type": "payment.initiated",
            **order_details,
        })

    async def notify_payment_detected(self, order_id: str, tx_hash: str, amount: str):
        return await self.dispatch(order_id, WebhookEventType.PAYMENT_DETECTED, {
            "type": "payment.detected",
            "txHash": tx_hash,
            "amount": amount,
        })

    async def notify_payment_confirmed(self, order_id: str, tx_hash: str, amount: str):
        return await self.dispatch(order_id, WebhookEventType.PAYMENT_CONFIRMED, {
            "type": "payment.confirmed",
            "txHash": tx_hash,
            "amount": amount,
            "message": "Payment has been confirmed on blockchain",
        })

    async def notify_payment_failed(self, order_id: str, reason: str):
        return await self.dispatch(order_id, WebhookEventType.PAYMENT_FAILED, {
            "type": "payment.failed",
            "reason": reason,
        })

    async def notify_payment_expired(self, order_id: str):
        return await self.dispatch(order_id, WebhookEventType.PAYMENT_EXPIRED, {
            "type": "payment.expired",
            "message": "Payment window has expired",
        })

    async def notify_order_shipped(self, order_id: str, tracking_number: str, carrier: str | None = None):
        return await self.dispatch(order_id, WebhookEventType.ORDER_SHIPPED, {
            "type": "order.shipped",
            "trackingNumber": tracking_number,
            "carrier": carrier,
        })

    async def notify_order_delivered(self, order_id: str):
        return await self.dispatch(order_id, WebhookEventType.ORDER_DELIVERED, {
            "type": "order.delivered",
            "message": "Order has been delivered",
        })


_dispatcher: WebhookDispatcher | None = None


def get_dispatcher() -> WebhookDispatcher:
    """Get or create the process-wide dispatcher bound to the main database."""
    global _dispatcher
    if _dispatcher is None:
        from hookline.database import AsyncSessionLocal
        from hookline.services.destination_service import ApiKeyDestinationResolver

        store = DeliveryStore(AsyncSessionLocal, claim_lease_seconds=settings.WEBHOOK_CLAIM_LEASE_SECONDS)
        resolver = ApiKeyDestinationResolver(AsyncSessionLocal)
        executor = DeliveryExecutor(store, resolver, timeout_seconds=settings.WEBHOOK_TIMEOUT_SECONDS)
        _dispatcher = WebhookDispatcher(
            store,
            resolver,
            executor,
            max_attempts=settings.WEBHOOK_MAX_ATTEMPTS,
        )
    return _dispatcher


async def trigger_webhook(subject_id: str, event_type: WebhookEventType, data: dict[str, Any] | None = None):
    """
    Trigger a webhook for a business event.

    Called from business modules when an order or payment changes state.
    """
    return await get_dispatcher().dispatch(subject_id, event_type, data)
