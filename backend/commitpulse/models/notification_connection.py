"""NotificationConnection ORM model."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, ForeignKey, Integer, String, TIMESTAMP, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commitpulse.database import Base


class NotificationConnection(Base):
    """Telegram chat the reminder engine writes to.

    Quiet hours are local hours of the day; a window whose start is after
    its end wraps past midnight (e.g. 22 -> 7).
    """

    __tablename__ = "notification_connections"

    notification_id: Mapped[int] = mapped_column(
        BigInteger,
        primary_key=True,
        autoincrement=True,
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default="true",
    )
    chat_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    telegram_user_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    telegram_username: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    quiet_hours_start: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    quiet_hours_end: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    timezone: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    last_notified_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )
    connected_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # --- Relationships ---
    user: Mapped["User"] = relationship(  # noqa: F821
        back_populates="notification_connection",
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationConnection(user_id={self.user_id}, "
            f"chat_id={self.chat_id!r}, enabled={self.enabled})>"
        )
