"""Closed value sets stored as strings in the database."""

import enum


class SyncReason(str, enum.Enum):
    """Why a sync job was enqueued."""

    INITIAL_BACKFILL = "initial_backfill"
    PUSH = "push"
    INSTALLATION_REPOSITORIES = "installation_repositories"
    RECONCILE = "reconcile"


class JobStatus(str, enum.Enum):
    """Lifecycle of a queued sync job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


UNRESOLVED_JOB_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


class SyncStatus(str, enum.Enum):
    """Sync state shown on a GitHub connection."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class AuthMode(str, enum.Enum):
    GITHUB_APP = "github_app"


class InstallationAccountType(str, enum.Enum):
    USER = "User"
    ORGANIZATION = "Organization"


class RepoSelectionMode(str, enum.Enum):
    SELECTED = "selected"
    ALL = "all"


class ReminderKind(str, enum.Enum):
    """Which reminder condition fired on a tick."""

    GOAL_NUDGE = "goal_nudge"
    ZERO_PUSH_FOLLOW_UP = "zero_push_follow_up"
    CRITICAL_ZERO_PUSH = "critical_zero_push"


def sql_values(enum_cls: type[enum.Enum]) -> str:
    """Render an enum as the body of a SQL ``IN (...)`` check constraint."""
    return ", ".join(f"'{member.value}'" for member in enum_cls)
