"""
Delivery record store.

Single source of truth for whether an event has been delivered. All
coordination between concurrent senders goes through claim(): a
conditional UPDATE that only one caller can win. Each operation runs in
its own short session, so no database lock is held while a webhook is
being sent.
"""
import uuid
from datetime import datetime, timedelta
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookline.models.base import utc_now
from hookline.models.webhook import (
    RESPONSE_SNIPPET_LIMIT,
    DeliveryStatus,
    WebhookDelivery,
    WebhookEventType,
)
from hookline.services.retry_policy import Transition


ACTIVE_STATUSES = (DeliveryStatus.PENDING, DeliveryStatus.RETRYING)


class DeliveryStore:
    """Persistence and claiming of webhook delivery records."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        claim_lease_seconds: int = 90,
        clock=utc_now,
    ):
        self.session_factory = session_factory
        self.claim_lease = timedelta(seconds=claim_lease_seconds)
        self.clock = clock

    async def create(
        self,
        subject_id: str,
        event_type: WebhookEventType,
        destination_url: str,
        destination_secret_ref: str | None,
        payload: str,
        max_attempts: int = 5,
    ) -> WebhookDelivery:
        """
        Insert a new PENDING record.

        The insert is committed before this returns, so the record survives
        a crash before the first send.

        Args:
            subject_id: Business entity the event concerns
            event_type: Event being delivered
            destination_url: Endpoint captured at creation
            destination_secret_ref: Reference used to fetch the signing secret
            payload: Exact JSON body sent on every attempt
            max_attempts: Attempt ceiling

        Returns:
            Newly created WebhookDelivery
        """
        now = self.clock()
        delivery = WebhookDelivery(
            subject_id=subject_id,
            event_type=event_type,
            destination_url=destination_url,
            destination_secret_ref=destination_secret_ref,
            payload=payload,
            status=DeliveryStatus.PENDING,
            attempts=0,
            max_attempts=max_attempts,
            created_at=now,
            updated_at=now,
        )
        async with self.session_factory() as db:
            db.add(delivery)
            await db.commit()
            await db.refresh(delivery)
        return delivery

    async def get(self, delivery_id: str) -> WebhookDelivery | None:
        """Get delivery by ID."""
        async with self.session_factory() as db:
            return await db.get(WebhookDelivery, delivery_id)

    async def claim(self, delivery_id: str, now: datetime | None = None) -> WebhookDelivery | None:
        """
        Take exclusive right to attempt a delivery.

        Succeeds only for a PENDING record, or a RETRYING record whose
        next_retry_at has passed, with attempts left and no live claim.
        A claim older than the lease is considered abandoned.

        Returns:
            The claimed record (with claim_token set), or None if another
            worker holds it or it is not due
        """
        now = now or self.clock()
        token = str(uuid.uuid4())

        stmt = (
            update(WebhookDelivery)
            .where(
                WebhookDelivery.id == delivery_id,
                WebhookDelivery.status.in_(ACTIVE_STATUSES),
                WebhookDelivery.attempts < WebhookDelivery.max_attempts,
                or_(
                    WebhookDelivery.status == DeliveryStatus.PENDING,
                    WebhookDelivery.next_retry_at <= now,
                ),
                or_(
                    WebhookDelivery.claim_token.is_(None),
                    WebhookDelivery.claimed_at <= now - self.claim_lease,
                ),
            )
            .values(claim_token=token, claimed_at=now)
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as db:
            result = await db.execute(stmt)
            if result.rowcount != 1:
                await db.rollback()
                return None
            delivery = await db.get(WebhookDelivery, delivery_id)
            await db.commit()
        return delivery

    async def release(self, delivery_id: str, claim_token: str) -> bool:
        """Drop a claim without recording an attempt."""
        stmt = (
            update(WebhookDelivery)
            .where(
                WebhookDelivery.id == delivery_id,
                WebhookDelivery.claim_token == claim_token,
            )
            .values(claim_token=None, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            await db.commit()
        return result.rowcount == 1

    async def record_attempt(
        self,
        delivery_id: str,
        claim_token: str,
        attempted_at: datetime,
        response_code: int | None,
        response_snippet: str | None,
        transition: Transition,
    ) -> WebhookDelivery | None:
        """
        Write the result of one attempt and release the claim.

        Increments attempts, stores the diagnostics and applies the status
        transition in a single update guarded by the claim token.

        Returns:
            Updated WebhookDelivery, or None if the claim was no longer held
        """
        values = {
            "attempts": WebhookDelivery.attempts + 1,
            "last_attempt_at": attempted_at,
            "last_response_code": response_code,
            "last_response_snippet": (
                response_snippet[:RESPONSE_SNIPPET_LIMIT] if response_snippet else None
            ),
            "status": transition.status,
            "next_retry_at": transition.next_retry_at,
            "claim_token": None,
            "claimed_at": None,
        }
        if transition.status == DeliveryStatus.DELIVERED:
            values["delivered_at"] = attempted_at

        stmt = (
            update(WebhookDelivery)
            .where(
                WebhookDelivery.id == delivery_id,
                WebhookDelivery.claim_token == claim_token,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as db:
            result = await db.execute(stmt)
            if result.rowcount != 1:
                await db.rollback()
                return None
            delivery = await db.get(WebhookDelivery, delivery_id)
            await db.commit()
        return delivery

    async def find_due(
        self,
        limit: int = 100,
        pending_grace_seconds: int = 120,
        now: datetime | None = None,
    ) -> list[WebhookDelivery]:
        """
        Select records the retry scheduler should attempt.

        Due records are RETRYING ones past next_retry_at, PENDING ones never
        attempted and older than the grace period (their first send was
        lost), excluding records under a live claim.

        Returns:
            Up to `limit` records, oldest retry time first
        """
        now = now or self.clock()
        pending_cutoff = now - timedelta(seconds=pending_grace_seconds)

        stmt = (
            select(WebhookDelivery)
            .where(
                WebhookDelivery.attempts < WebhookDelivery.max_attempts,
                or_(
                    and_(
                        WebhookDelivery.status == DeliveryStatus.RETRYING,
                        WebhookDelivery.next_retry_at <= now,
                    ),
                    and_(
                        WebhookDelivery.status == DeliveryStatus.PENDING,
                        WebhookDelivery.attempts == 0,
                        WebhookDelivery.created_at <= pending_cutoff,
                    ),
                ),
                or_(
                    WebhookDelivery.claim_token.is_(None),
                    WebhookDelivery.claimed_at <= now - self.claim_lease,
                ),
            )
            .order_by(WebhookDelivery.next_retry_at.asc(), WebhookDelivery.created_at.asc())
            .limit(limit)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def list_deliveries(self, subject_id: str, limit: int | None = None) -> list[WebhookDelivery]:
        """
        Get deliveries for a subject.

        Returns:
            List of deliveries (most recent first)
        """
        stmt = (
            select(WebhookDelivery)
            .where(WebhookDelivery.subject_id == subject_id)
            .order_by(WebhookDelivery.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())
