"""SyncJob ORM model."""

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Index, Integer, String, TIMESTAMP, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from commitpulse.database import Base
from commitpulse.models.enums import JobStatus, SyncReason, sql_values


class SyncJob(Base):
    """Queued GitHub sync task.

    ``run_after`` is the earliest time the job may be claimed;
    ``delivery_id`` carries the webhook delivery id so a redelivered
    webhook never enqueues twice.
    """

    __tablename__ = "sync_jobs"
    __table_args__ = (
        CheckConstraint(
            f"status IN ({sql_values(JobStatus)})",
            name="status",
        ),
        CheckConstraint(
            f"reason IN ({sql_values(SyncReason)})",
            name="reason",
        ),
        Index("ix_sync_jobs_status_run_after", "status", "run_after"),
        Index("ix_sync_jobs_installation_status", "installation_id", "status"),
    )

    job_id: Mapped[int] = mapped_column(
        BigInteger,
        primary_key=True,
        autoincrement=True,
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    installation_id: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )
    repo_full_name: Mapped[str | None] = mapped_column(
        String(512),
        nullable=True,
    )
    reason: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    lookback_days: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default=JobStatus.PENDING.value,
    )
    attempt: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default="0",
    )
    run_after: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    delivery_id: Mapped[str | None] = mapped_column(
        String(64),
        unique=True,
        nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<SyncJob(job_id={self.job_id}, reason={self.reason!r}, "
            f"status={self.status!r}, attempt={self.attempt})>"
        )
