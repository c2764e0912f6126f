"""
Webhook retry worker for Hookline.

Re-drives deliveries that are due for retry. Runs either inside the API
process (RetryScheduler.run_forever, started from the app lifespan) or as
an ARQ cron job:

    arq hookline.worker.WorkerSettings

Running both, or several workers, is safe: each record is claimed in the
store before it is attempted.
"""
import asyncio
from datetime import datetime

from arq import cron
from arq.connections import RedisSettings

from hookline.config import settings
from hookline.logging_config import get_logger
from hookline.routes.metrics import track_retry_tick_failed, update_retry_batch_size
from hookline.sentry_config import capture_exception
from hookline.services.delivery_executor import DeliveryExecutor
from hookline.services.delivery_store import DeliveryStore


log = get_logger(component="retry_scheduler")


class RetryScheduler:
    """Periodically attempts deliveries whose retry time has come."""

    def __init__(
        self,
        store: DeliveryStore,
        executor: DeliveryExecutor,
        interval_seconds: float = 60.0,
        batch_size: int = 100,
        pending_grace_seconds: int = 120,
        max_concurrent: int = 10,
    ):
        self.store = store
        self.executor = executor
        self.interval = interval_seconds
        self.batch_size = batch_size
        self.pending_grace_seconds = pending_grace_seconds
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._stopping = asyncio.Event()

    async def run_once(self, now: datetime | None = None) -> int:
        """
        Run one scheduler tick.

        Args:
            now: Time the tick runs at (defaults to the store's clock)

        Returns:
            Number of attempts made; records claimed by someone else in the
            meantime are skipped and not counted
        """
        due = await self.store.find_due(
            limit=self.batch_size,
            pending_grace_seconds=self.pending_grace_seconds,
            now=now,
        )
        update_retry_batch_size(len(due))
        if not due:
            return 0

        log.info("retry_tick_started", due=len(due))

        async def attempt(delivery_id: str):
            async with self._semaphore:
                return await self.executor.deliver(delivery_id, now=now)

        results = await asyncio.gather(
            *(attempt(delivery.id) for delivery in due),
            return_exceptions=True
        )

        processed = 0
        for delivery, result in zip(due, results):
            if isinstance(result, Exception):
                log.error("retry_attempt_error", delivery_id=delivery.id, error=str(result))
                capture_exception(result)
            elif result is not None:
                processed += 1

        log.info("retry_tick_completed", due=len(due), processed=processed)
        return processed

    async def run_forever(self) -> None:
        """Tick every interval until stop() is called."""
        self._stopping.clear()
        log.info("retry_scheduler_started", interval_seconds=self.interval)

        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                # Store unavailable or similar; try again next tick
                log.error("retry_tick_failed", error=str(e))
                track_retry_tick_failed()
                capture_exception()

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        log.info("retry_scheduler_stopped")

    def stop(self) -> None:
        self._stopping.set()


def build_scheduler(session_factory=None) -> RetryScheduler:
    """Create a scheduler wired to the main database and settings."""
    from hookline.services.destination_service import ApiKeyDestinationResolver

    if session_factory is None:
        from hookline.database import AsyncSessionLocal
        session_factory = AsyncSessionLocal

    store = DeliveryStore(session_factory, claim_lease_seconds=settings.WEBHOOK_CLAIM_LEASE_SECONDS)
    executor = DeliveryExecutor(
        store,
        ApiKeyDestinationResolver(session_factory),
        timeout_seconds=settings.WEBHOOK_TIMEOUT_SECONDS,
    )
    return RetryScheduler(
        store,
        executor,
        interval_seconds=settings.WEBHOOK_RETRY_INTERVAL_SECONDS,
        batch_size=settings.WEBHOOK_RETRY_BATCH_SIZE,
        pending_grace_seconds=settings.WEBHOOK_PENDING_GRACE_SECONDS,
        max_concurrent=settings.WEBHOOK_MAX_CONCURRENT_DELIVERIES,
    )


async def startup(ctx: dict) -> None:
    """ARQ startup hook."""
    ctx["scheduler"] = build_scheduler()


async def process_webhook_retries(ctx: dict) -> int:
    """ARQ cron job: one retry scheduler tick."""
    return await ctx["scheduler"].run_once()


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq hookline.worker.WorkerSettings'"""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    on_startup = startup
    functions = [process_webhook_retries]
    cron_jobs = [
        cron(process_webhook_retries, second=0, run_at_startup=True, unique=True),
    ]
    # A tick can run a full batch of attempts at the HTTP timeout
    job_timeout = 600
    max_tries = 1
