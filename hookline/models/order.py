"""
External order model.

Orders placed through an integrator's API key. Webhook events are emitted
per order; the order id is the delivery subject.
"""
import uuid
from sqlalchemy import String, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship
from hookline.models.base import Base, TimestampMixin


class ExternalOrder(Base, TimestampMixin):
    """Order created by an integrator through the external payment API."""
    __tablename__ = "external_orders"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    api_key_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("api_keys.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")

    # Relationships
    api_key = relationship("ApiKey", back_populates="orders")

    def __repr__(self):
        return f"<ExternalOrder(id={self.id}, order_number={self.order_number}, status={self.status})>"
