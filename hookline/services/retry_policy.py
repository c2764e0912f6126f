"""
Retry policy for webhook deliveries.

Maps the outcome of one attempt to the record's next status.
"""
import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import assert_never

from hookline.models.webhook import DeliveryStatus


# Delay before the next attempt, indexed by attempts made so far (1-based)
RETRY_DELAYS = [
    timedelta(minutes=1),
    timedelta(minutes=5),
    timedelta(minutes=30),
    timedelta(hours=2),
    timedelta(hours=24),
]


class DeliveryOutcome(str, enum.Enum):
    """Classification of a single HTTP attempt."""
    DELIVERED = "delivered"
    RETRYABLE_FAILURE = "retryable_failure"
    TERMINAL_FAILURE = "terminal_failure"


@dataclass(frozen=True)
class Transition:
    """Status and retry time a record moves to after an attempt."""
    status: DeliveryStatus
    next_retry_at: datetime | None = None


def retry_delay(attempt: int) -> timedelta:
    """Delay after attempt number `attempt`, clamped to the last entry."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return RETRY_DELAYS[min(attempt, len(RETRY_DELAYS)) - 1]


def classify_status_code(status_code: int) -> DeliveryOutcome:
    """
    Classify an HTTP response status.

    2xx delivers; 5xx and 429 are worth retrying; anything else means the
    endpoint rejects the request and retrying will not help.
    """
    if 200 <= status_code < 300:
        return DeliveryOutcome.DELIVERED
    if status_code >= 500 or status_code == 429:
        return DeliveryOutcome.RETRYABLE_FAILURE
    return DeliveryOutcome.TERMINAL_FAILURE


def next_transition(
    outcome: DeliveryOutcome,
    attempts: int,
    max_attempts: int,
    now: datetime,
) -> Transition:
    """
    Decide the record's next state.

    Args:
        outcome: Result of the attempt just made
        attempts: Attempts made including that one
        max_attempts: Record's attempt ceiling
        now: Time of the attempt
    """
    match outcome:
        case DeliveryOutcome.DELIVERED:
            return Transition(DeliveryStatus.DELIVERED)
        case DeliveryOutcome.TERMINAL_FAILURE:
            return Transition(DeliveryStatus.FAILED)
        case DeliveryOutcome.RETRYABLE_FAILURE:
            if attempts < max_attempts:
                return Transition(DeliveryStatus.RETRYING, now + retry_delay(attempts))
            return Transition(DeliveryStatus.FAILED)
        case _:
            assert_never(outcome)
