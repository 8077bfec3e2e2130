"""CommitEvent ORM model."""

from datetime import datetime

from sqlalchemy import BigInteger, ForeignKey, Index, Integer, String, TIMESTAMP, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from commitpulse.database import Base


class CommitEvent(Base):
    """One ingested commit authored by the user.

    Rows are immutable: ``(user_id, sha)`` is unique and a repeated insert
    is a no-op.  They are only removed by a disconnect or a full reset.
    """

    __tablename__ = "commit_events"
    __table_args__ = (
        UniqueConstraint("user_id", "sha", name="uq_commit_events_user_sha"),
        Index("ix_commit_events_user_committed_at", "user_id", "committed_at"),
    )

    event_id: Mapped[int] = mapped_column(
        BigInteger,
        primary_key=True,
        autoincrement=True,
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    repo: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
        comment="Repository full name (owner/name)",
    )
    repo_id: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )
    sha: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        server_default="",
    )
    url: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        server_default="",
    )
    additions: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default="0",
    )
    deletions: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default="0",
    )
    files_changed: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default="0",
    )
    committed_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        comment="Author timestamp, the one GitHub contributions are keyed to",
    )
    size: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default="0",
    )

    def __repr__(self) -> str:
        return (
            f"<CommitEvent(event_id={self.event_id}, "
            f"repo={self.repo!r}, sha={self.sha[:8]!r})>"
        )
