"""ORM models package.

Importing this module ensures every model is registered with the
SQLAlchemy ``Base.metadata`` so that Alembic autogenerate can detect
all tables.
"""

from commitpulse.models.commit_event import CommitEvent
from commitpulse.models.daily_stat import DailyStat
from commitpulse.models.github_connection import GitHubConnection
from commitpulse.models.goal import Goal
from commitpulse.models.notification_connection import NotificationConnection
from commitpulse.models.sync_job import SyncJob
from commitpulse.models.user import User
from commitpulse.models.webhook_delivery import WebhookDelivery

__all__ = [
    "CommitEvent",
    "DailyStat",
    "GitHubConnection",
    "Goal",
    "NotificationConnection",
    "SyncJob",
    "User",
    "WebhookDelivery",
]
