"""
Webhook delivery executor.

Makes exactly one signed HTTP attempt per call and records its result on
the delivery record. Looping over attempts is the retry scheduler's job.
"""
import asyncio
import time
from dataclasses import dataclass
from datetime import datetime

import httpx

from hookline.logging_config import get_logger
from hookline.models.base import utc_now
from hookline.models.webhook import RESPONSE_SNIPPET_LIMIT, DeliveryStatus, WebhookDelivery
from hookline.routes.metrics import track_webhook_attempt, track_webhook_terminal
from hookline.services.delivery_store import DeliveryStore
from hookline.services.destination_service import DestinationResolver
from hookline.services.retry_policy import DeliveryOutcome, classify_status_code, next_transition
from hookline.services.signature import sign


@dataclass(frozen=True)
class AttemptResult:
    """What one HTTP attempt produced."""
    outcome: DeliveryOutcome
    attempted_at: datetime
    response_code: int | None = None
    response_snippet: str | None = None


async def read_snippet(response: httpx.Response) -> str | None:
    """Read at most RESPONSE_SNIPPET_LIMIT bytes of the response body."""
    chunks = bytearray()
    async for chunk in response.aiter_bytes():
        chunks.extend(chunk)
        if len(chunks) >= RESPONSE_SNIPPET_LIMIT:
            break

    text = bytes(chunks[:RESPONSE_SNIPPET_LIMIT]).decode(response.encoding or "utf-8", errors="replace")
    return text or None


class DeliveryExecutor:
    """Sends webhook deliveries and records each attempt."""

    def __init__(
        self,
        store: DeliveryStore,
        resolver: DestinationResolver,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock=utc_now,
    ):
        self.store = store
        self.resolver = resolver
        self.timeout = timeout_seconds
        self._transport = transport
        self.clock = clock

    async def attempt(self, delivery: WebhookDelivery) -> AttemptResult:
        """
        Make one HTTP attempt for a delivery.

        The signing secret is looked up again on every call so rotated
        secrets apply to retries. The body is the stored payload, unchanged.

        Returns:
            AttemptResult with the classified outcome
        """
        secret = await self.resolver.get_secret(delivery.destination_secret_ref)

        attempted_at = self.clock()
        timestamp = str(int(attempted_at.timestamp() * 1000))
        body = delivery.payload.encode("utf-8")

        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Timestamp": timestamp,
            "X-Webhook-Event": delivery.event_type.value,
            "X-Webhook-Delivery-Id": delivery.id,
        }
        if secret:
            headers["X-Webhook-Signature"] = sign(secret, timestamp, body)

        try:
            # Deadline for the whole attempt; httpx timeouts are per phase
            async with asyncio.timeout(self.timeout):
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    async with client.stream(
                        "POST",
                        delivery.destination_url,
                        content=body,
                        headers=headers
                    ) as response:
                        snippet = await read_snippet(response)
        except (TimeoutError, httpx.TimeoutException):
            return AttemptResult(DeliveryOutcome.RETRYABLE_FAILURE, attempted_at, None, "Request timeout")
        except httpx.InvalidURL as e:
            return AttemptResult(DeliveryOutcome.TERMINAL_FAILURE, attempted_at, None, f"Invalid URL: {e}")
        except httpx.RequestError as e:
            return AttemptResult(
                DeliveryOutcome.RETRYABLE_FAILURE,
                attempted_at,
                None,
                str(e) or type(e).__name__
            )

        return AttemptResult(
            classify_status_code(response.status_code),
            attempted_at,
            response.status_code,
            snippet,
        )

    async def deliver(self, delivery_id: str, now: datetime | None = None) -> DeliveryOutcome | None:
        """
        Claim a delivery, attempt it once and persist the result.

        Args:
            delivery_id: Delivery record ID
            now: Time used to check whether the record is due

        Returns:
            The attempt's outcome, or None if the record could not be claimed
            (another worker has it, it is terminal, or it is not due yet)
        """
        claimed = await self.store.claim(delivery_id, now=now)
        if claimed is None:
            return None

        log = get_logger(
            delivery_id=claimed.id,
            subject_id=claimed.subject_id,
            event_type=claimed.event_type.value,
            attempt=claimed.attempts + 1,
        )

        started = time.monotonic()
        try:
            result = await self.attempt(claimed)
        except Exception:
            await self.store.release(claimed.id, claimed.claim_token)
            log.exception("webhook_attempt_error")
            raise
        duration = time.monotonic() - started

        attempts = claimed.attempts + 1
        transition = next_transition(
            result.outcome,
            attempts,
            claimed.max_attempts,
            result.attempted_at,
        )

        updated = await self.store.record_attempt(
            claimed.id,
            claimed.claim_token,
            attempted_at=result.attempted_at,
            response_code=result.response_code,
            response_snippet=result.response_snippet,
            transition=transition,
        )
        track_webhook_attempt(claimed.event_type.value, result.outcome.value, duration)

        if updated is None:
            log.warning("webhook_claim_lost", outcome=result.outcome.value)
            return result.outcome

        if transition.status.is_terminal:
            track_webhook_terminal(claimed.event_type.value, transition.status.value)

        if transition.status == DeliveryStatus.DELIVERED:
            log.info("webhook_delivered", status_code=result.response_code)
        elif transition.status == DeliveryStatus.RETRYING:
            log.warning(
                "webhook_retry_scheduled",
                status_code=result.response_code,
                error=result.response_snippet if result.response_code is None else None,
                next_retry_at=transition.next_retry_at.isoformat(),
            )
        else:
            log.warning(
                "webhook_failed",
                status_code=result.response_code,
                outcome=result.outcome.value,
                attempts=attempts,
            )

        return result.outcome
