"""Goal ORM model."""

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Integer, String, TIMESTAMP, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commitpulse.database import Base


class Goal(Base):
    """Daily targets set by the user."""

    __tablename__ = "goals"
    __table_args__ = (
        CheckConstraint(
            "push_by_hour >= 0 AND push_by_hour <= 23",
            name="push_by_hour",
        ),
    )

    goal_id: Mapped[int] = mapped_column(
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
    commits_per_day: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default="1",
    )
    loc_per_day: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default="50",
    )
    push_by_hour: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default="18",
    )
    timezone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        server_default="UTC",
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    # --- Relationships ---
    user: Mapped["User"] = relationship(  # noqa: F821
        back_populates="goal",
    )

    def __repr__(self) -> str:
        return (
            f"<Goal(user_id={self.user_id}, commits_per_day={self.commits_per_day}, "
            f"loc_per_day={self.loc_per_day}, push_by_hour={self.push_by_hour})>"
        )
