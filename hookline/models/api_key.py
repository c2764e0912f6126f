"""
API key model.

An integrator's API key carries its webhook destination: the URL to call
and the shared secret used to sign callbacks.
"""
import uuid
from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from hookline.models.base import Base, TimestampMixin


class ApiKey(Base, TimestampMixin):
    """
    Integrator API key with optional webhook destination.

    Only the SHA-256 hash of the raw key is stored.
    """
    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    webhook_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    webhook_secret: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Relationships
    orders = relationship("ExternalOrder", back_populates="api_key")

    def __repr__(self):
        return f"<ApiKey(id={self.id}, name={self.name}, webhook_url={self.webhook_url})>"
