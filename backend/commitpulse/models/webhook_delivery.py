"""WebhookDelivery ORM model."""

from datetime import datetime

from sqlalchemy import BigInteger, String, TIMESTAMP, func
from sqlalchemy.orm import Mapped, mapped_column

from commitpulse.database import Base


class WebhookDelivery(Base):
    """GitHub webhook delivery already accepted (keyed by X-GitHub-Delivery)."""

    __tablename__ = "webhook_deliveries"

    delivery_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )
    event: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    installation_id: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )
    received_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<WebhookDelivery(delivery_id={self.delivery_id!r}, event={self.event!r})>"
