"""Tests for the delivery record store and its claim."""

import asyncio
from datetime import timedelta

import pytest

from hookline.models.webhook import DeliveryStatus, WebhookEventType
from hookline.services.retry_policy import Transition


PAYLOAD = '{"event":"PAYMENT_CONFIRMED","timestamp":"2026-01-15T12:00:00.000Z","data":{"subjectId":"ord_1"}}'


async def create_delivery(store, subject_id: str = "ord_1", **kwargs):
    return await store.create(
        subject_id=subject_id,
        event_type=kwargs.pop("event_type", WebhookEventType.PAYMENT_CONFIRMED),
        destination_url="https://merchant.example.com/webhooks",
        destination_secret_ref="key_1",
        payload=PAYLOAD,
        **kwargs,
    )


async def fail_attempt(store, delivery, clock, retry_in=timedelta(minutes=1)):
    claimed = await store.claim(delivery.id)
    return await store.record_attempt(
        claimed.id,
        claimed.claim_token,
        attempted_at=clock(),
        response_code=500,
        response_snippet="boom",
        transition=Transition(DeliveryStatus.RETRYING, clock() + retry_in),
    )


class TestCreate:
    @pytest.mark.asyncio
    async def test_new_record_is_pending(self, store) -> None:
        delivery = await create_delivery(store)

        assert delivery.status == DeliveryStatus.PENDING
        assert delivery.attempts == 0
        assert delivery.max_attempts == 5
        assert delivery.next_retry_at is None
        assert delivery.claim_token is None

        stored = await store.get(delivery.id)
        assert stored.payload == PAYLOAD
        assert stored.destination_url == "https://merchant.example.com/webhooks"

    @pytest.mark.asyncio
    async def test_get_unknown_returns_none(self, store) -> None:
        assert await store.get("missing") is None


class TestClaim:
    @pytest.mark.asyncio
    async def test_claim_pending(self, store) -> None:
        delivery = await create_delivery(store)

        claimed = await store.claim(delivery.id)

        assert claimed is not None
        assert claimed.claim_token is not None
        assert claimed.status == DeliveryStatus.PENDING

    @pytest.mark.asyncio
    async def test_second_claim_loses(self, store) -> None:
        delivery = await create_delivery(store)

        assert await store.claim(delivery.id) is not None
        assert await store.claim(delivery.id) is None

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, store) -> None:
        delivery = await create_delivery(store)

        results = await asyncio.gather(*(store.claim(delivery.id) for _ in range(5)))

        assert sum(1 for result in results if result is not None) == 1

    @pytest.mark.asyncio
    async def test_retrying_not_claimable_before_due(self, store, clock) -> None:
        delivery = await fail_attempt(store, await create_delivery(store), clock)

        assert await store.claim(delivery.id) is None

        clock.advance(minutes=1)
        assert await store.claim(delivery.id) is not None

    @pytest.mark.asyncio
    async def test_terminal_not_claimable(self, store, clock) -> None:
        delivery = await create_delivery(store)
        claimed = await store.claim(delivery.id)
        await store.record_attempt(
            claimed.id,
            claimed.claim_token,
            attempted_at=clock(),
            response_code=200,
            response_snippet="ok",
            transition=Transition(DeliveryStatus.DELIVERED),
        )

        assert await store.claim(delivery.id) is None

    @pytest.mark.asyncio
    async def test_abandoned_claim_expires(self, store, clock) -> None:
        delivery = await create_delivery(store)
        assert await store.claim(delivery.id) is not None

        clock.advance(seconds=89)
        assert await store.claim(delivery.id) is None

        clock.advance(seconds=1)
        assert await store.claim(delivery.id) is not None

    @pytest.mark.asyncio
    async def test_release(self, store) -> None:
        delivery = await create_delivery(store)
        claimed = await store.claim(delivery.id)

        assert await store.release(claimed.id, claimed.claim_token)
        assert await store.claim(delivery.id) is not None

    @pytest.mark.asyncio
    async def test_release_with_wrong_token(self, store) -> None:
        delivery = await create_delivery(store)
        await store.claim(delivery.id)

        assert not await store.release(delivery.id, "not-the-token")


class TestRecordAttempt:
    @pytest.mark.asyncio
    async def test_records_attempt_and_releases_claim(self, store, clock) -> None:
        delivery = await fail_attempt(store, await create_delivery(store), clock)

        assert delivery.status == DeliveryStatus.RETRYING
        assert delivery.attempts == 1
        assert delivery.last_attempt_at == clock()
        assert delivery.next_retry_at == clock() + timedelta(minutes=1)
        assert delivery.last_response_code == 500
        assert delivery.last_response_snippet == "boom"
        assert delivery.claim_token is None
        assert delivery.claimed_at is None

    @pytest.mark.asyncio
    async def test_delivered_sets_delivered_at(self, store, clock) -> None:
        delivery = await create_delivery(store)
        claimed = await store.claim(delivery.id)

        updated = await store.record_attempt(
            claimed.id,
            claimed.claim_token,
            attempted_at=clock(),
            response_code=204,
            response_snippet=None,
            transition=Transition(DeliveryStatus.DELIVERED),
        )

        assert updated.status == DeliveryStatus.DELIVERED
        assert updated.delivered_at == clock()
        assert updated.next_retry_at is None

    @pytest.mark.asyncio
    async def test_requires_claim_token(self, store, clock) -> None:
        delivery = await create_delivery(store)
        await store.claim(delivery.id)

        updated = await store.record_attempt(
            delivery.id,
            "stolen",
            attempted_at=clock(),
            response_code=200,
            response_snippet=None,
            transition=Transition(DeliveryStatus.DELIVERED),
        )

        assert updated is None
        assert (await store.get(delivery.id)).attempts == 0

    @pytest.mark.asyncio
    async def test_snippet_is_truncated(self, store, clock) -> None:
        delivery = await create_delivery(store)
        claimed = await store.claim(delivery.id)

        updated = await store.record_attempt(
            claimed.id,
            claimed.claim_token,
            attempted_at=clock(),
            response_code=500,
            response_snippet="x" * 5000,
            transition=Transition(DeliveryStatus.FAILED),
        )

        assert len(updated.last_response_snippet) == 1000


class TestFindDue:
    @pytest.mark.asyncio
    async def test_retrying_due_after_next_retry_at(self, store, clock) -> None:
        delivery = await fail_attempt(store, await create_delivery(store), clock)

        assert await store.find_due() == []

        clock.advance(minutes=1)
        assert [d.id for d in await store.find_due()] == [delivery.id]

    @pytest.mark.asyncio
    async def test_fresh_pending_not_due(self, store, clock) -> None:
        await create_delivery(store)

        assert await store.find_due(pending_grace_seconds=120) == []

    @pytest.mark.asyncio
    async def test_stale_pending_due_after_grace(self, store, clock) -> None:
        delivery = await create_delivery(store)
        clock.advance(seconds=121)

        assert [d.id for d in await store.find_due(pending_grace_seconds=120)] == [delivery.id]

    @pytest.mark.asyncio
    async def test_claimed_records_excluded(self, store, clock) -> None:
        delivery = await create_delivery(store)
        clock.advance(seconds=121)
        await store.claim(delivery.id)

        assert await store.find_due() == []

    @pytest.mark.asyncio
    async def test_batch_limit(self, store, clock) -> None:
        for i in range(5):
            await create_delivery(store, subject_id=f"ord_{i}")
        clock.advance(hours=1)

        assert len(await store.find_due(limit=3)) == 3


class TestListDeliveries:
    @pytest.mark.asyncio
    async def test_most_recent_first(self, store, clock) -> None:
        first = await create_delivery(store, event_type=WebhookEventType.PAYMENT_DETECTED)
        clock.advance(seconds=5)
        second = await create_delivery(store, event_type=WebhookEventType.PAYMENT_CONFIRMED)
        await create_delivery(store, subject_id="ord_other")

        deliveries = await store.list_deliveries("ord_1")

        assert [d.id for d in deliveries] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_limit(self, store, clock) -> None:
        for _ in range(3):
            await create_delivery(store)
            clock.advance(seconds=1)

        assert len(await store.list_deliveries("ord_1", limit=2)) == 2
