"""DailyStat ORM model."""

from datetime import datetime

from sqlalchemy import BigInteger, ForeignKey, Integer, String, TIMESTAMP, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from commitpulse.database import Base


class DailyStat(Base):
    """Per-user, per-calendar-day commit aggregate.

    ``date`` is a ``YYYY-MM-DD`` day key in the user's configured time zone.
    Counters are bumped incrementally for every newly inserted commit, so
    ``avg_commit_size`` always equals ``round(loc_changed / commit_count)``.
    """

    __tablename__ = "daily_stats"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_daily_stats_user_date"),
    )

    stat_id: Mapped[int] = mapped_column(
        BigInteger,
        primary_key=True,
        autoincrement=True,
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )
    commit_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default="0",
    )
    loc_changed: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default="0",
    )
    avg_commit_size: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default="0",
    )
    repos_touched: Mapped[list[str]] = mapped_column(
        ARRAY(String(512)),
        nullable=False,
        server_default="{}",
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<DailyStat(user_id={self.user_id}, date={self.date!r}, "
            f"commit_count={self.commit_count})>"
        )
