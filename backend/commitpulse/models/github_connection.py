"""GitHubConnection ORM model."""

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Integer, String, TIMESTAMP, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commitpulse.database import Base
from commitpulse.models.enums import AuthMode, SyncStatus, sql_values


class GitHubConnection(Base):
    """Authorized GitHub App installation linked to a user.

    Holds the sync bookkeeping (window bounds, status, last error) and the
    cached streak value refreshed after every completed sync.
    """

    __tablename__ = "github_connections"
    __table_args__ = (
        CheckConstraint(
            f"sync_status IN ({sql_values(SyncStatus)})",
            name="sync_status",
        ),
        CheckConstraint(
            f"auth_mode IN ({sql_values(AuthMode)})",
            name="auth_mode",
        ),
    )

    connection_id: Mapped[int] = mapped_column(
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
    auth_mode: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default=AuthMode.GITHUB_APP.value,
    )
    installation_id: Mapped[int] = mapped_column(
        BigInteger,
        unique=True,
        nullable=False,
    )
    installation_account_login: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    installation_account_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    repo_selection_mode: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default="selected",
    )
    github_login: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    connected_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # --- Sync bookkeeping ---
    last_synced_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )
    history_synced_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )
    synced_from_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="Earliest authored timestamp ingested so far",
    )
    synced_to_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="Latest authored timestamp ingested so far",
    )
    sync_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default=SyncStatus.IDLE.value,
    )
    last_error_code: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    last_error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    last_webhook_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )

    # --- Streak cache ---
    streak_days: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    streak_updated_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )

    # --- Relationships ---
    user: Mapped["User"] = relationship(  # noqa: F821
        back_populates="github_connection",
    )

    def __repr__(self) -> str:
        return (
            f"<GitHubConnection(user_id={self.user_id}, "
            f"installation_id={self.installation_id}, "
            f"sync_status={self.sync_status!r})>"
        )
