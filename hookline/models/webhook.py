"""
Webhook Delivery Model

Tracks outbound webhook deliveries: one row per notification, covering
every attempt made for it.
"""
import enum
import uuid
from datetime import datetime
from sqlalchemy import CheckConstraint, String, Integer, Text, Index, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from hookline.models.base import Base, TimestampMixin, UTCDateTime


# Diagnostic response text is truncated to this many characters
RESPONSE_SNIPPET_LIMIT = 1000


class WebhookEventType(str, enum.Enum):
    """Events integrators can be notified about."""
    PAYMENT_INITIATED = "PAYMENT_INITIATED"
    PAYMENT_DETECTED = "PAYMENT_DETECTED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_EXPIRED = "PAYMENT_EXPIRED"
    ORDER_SHIPPED = "ORDER_SHIPPED"
    ORDER_DELIVERED = "ORDER_DELIVERED"


class DeliveryStatus(str, enum.Enum):
    """
    Delivery lifecycle.

    PENDING -> DELIVERED | RETRYING | FAILED
    RETRYING -> RETRYING | DELIVERED | FAILED
    DELIVERED and FAILED are terminal.
    """
    PENDING = "PENDING"
    RETRYING = "RETRYING"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED)


class WebhookDelivery(Base, TimestampMixin):
    """
    Webhook delivery record.

    payload and destination_url are write-once. The signing secret is never
    stored here; destination_secret_ref points at the API key whose current
    secret is fetched on every attempt.
    """
    __tablename__ = "webhook_deliveries"
    __table_args__ = (
        Index("ix_webhook_deliveries_status_next_retry", "status", "next_retry_at"),
        CheckConstraint("attempts <= max_attempts", name="ck_webhook_deliveries_attempts"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    subject_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    event_type: Mapped[WebhookEventType] = mapped_column(
        SQLEnum(WebhookEventType, native_enum=False, length=32),
        nullable=False
    )
    destination_url: Mapped[str] = mapped_column(Text, nullable=False)
    destination_secret_ref: Mapped[str | None] = mapped_column(String(36), nullable=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[DeliveryStatus] = mapped_column(
        SQLEnum(DeliveryStatus, native_enum=False, length=20),
        nullable=False,
        default=DeliveryStatus.PENDING
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    last_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_response_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_response_snippet: Mapped[str | None] = mapped_column(Text, nullable=True)

    # In-flight marker, see DeliveryStore.claim
    claim_token: Mapped[str | None] = mapped_column(String(36), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self):
        return (
            f"<WebhookDelivery(id={self.id}, event={self.event_type}, "
            f"status={self.status}, attempts={self.attempts}/{self.max_attempts})>"
        )
