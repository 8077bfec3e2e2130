"""GitHub Webhook 取り込みサービス。

署名検証済みの Webhook 配信を記録し、イベント種別に応じて
同期ジョブを投入する。App のアンインストールでは関連データを削除する。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commitpulse.models import WebhookDelivery
from commitpulse.models.enums import SyncReason, SyncStatus
from commitpulse.services.connection_service import ConnectionService
from commitpulse.services.job_queue import SyncJobQueue, SyncJobSpec

logger = logging.getLogger(__name__)

EVENT_REASONS: dict[str, SyncReason] = {
    "push": SyncReason.PUSH,
    "installation_repositories": SyncReason.INSTALLATION_REPOSITORIES,
    "installation": SyncReason.RECONCILE,
}


@dataclass(frozen=True)
class WebhookEvent:
    """Webhook 配信から取り出した必要な情報。"""

    delivery_id: str
    event: str
    installation_id: int | None = None
    repo_full_name: str | None = None
    action: str | None = None
    sender_login: str | None = None

    @classmethod
    def from_payload(cls, delivery_id: str, event: str, payload: dict[str, Any]) -> WebhookEvent:
        installation = payload.get("installation") or {}
        repository = payload.get("repository") or {}
        sender = payload.get("sender") or {}
        installation_id = installation.get("id")
        return cls(
            delivery_id=delivery_id,
            event=event,
            installation_id=int(installation_id) if installation_id is not None else None,
            repo_full_name=repository.get("full_name"),
            action=payload.get("action"),
            sender_login=sender.get("login"),
        )


@dataclass(frozen=True)
class WebhookResult:
    accepted: bool
    duplicate: bool
    enqueued: bool = False


class WebhookService:
    """Webhook 配信を処理するサービスクラス。"""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def ingest(self, event: WebhookEvent) -> WebhookResult:
        """配信を記録し、対応する処理を行う。

        同じ配信IDは一度だけ処理され、再配信は ``duplicate=True`` で応答する。

        Args:
            event: Webhook イベント。

        Returns:
            WebhookResult。``enqueued`` が True ならワーカーを起動すべき。
        """
        existing = await self.session.execute(
            select(WebhookDelivery.delivery_id).where(
                WebhookDelivery.delivery_id == event.delivery_id
            )
        )
        if existing.first() is not None:
            logger.info("Duplicate webhook delivery %s", event.delivery_id)
            return WebhookResult(accepted=True, duplicate=True)

        now = datetime.now(timezone.utc)
        self.session.add(
            WebhookDelivery(
                delivery_id=event.delivery_id,
                event=event.event,
                installation_id=event.installation_id,
                received_at=now,
            )
        )
        await self.session.flush()

        if event.installation_id is None:
            return WebhookResult(accepted=True, duplicate=False)

        connections = ConnectionService(self.session)
        connection = await connections.get_by_installation(event.installation_id)
        if connection is None:
            logger.debug("No connection for installation %d", event.installation_id)
            return WebhookResult(accepted=True, duplicate=False)

        connection.last_webhook_at = now
        if connection.github_login is None and event.event == "installation":
            connection.github_login = event.sender_login

        if event.event == "installation" and event.action == "deleted":
            await connections.clear_github_data(
                connection.user_id,
                event.installation_id,
                clear_connection=True,
            )
            logger.info(
                "Installation %d deleted; removed data for user_id=%d",
                event.installation_id,
                connection.user_id,
            )
            return WebhookResult(accepted=True, duplicate=False)

        reason = EVENT_REASONS.get(event.event)
        if reason is None:
            await self.session.flush()
            return WebhookResult(accepted=True, duplicate=False)

        job = await SyncJobQueue(self.session).enqueue(
            SyncJobSpec(
                user_id=connection.user_id,
                installation_id=event.installation_id,
                reason=reason,
                repo_full_name=event.repo_full_name if reason == SyncReason.PUSH else None,
                delivery_id=event.delivery_id,
            ),
            now=now,
        )
        await connections.set_sync_status(connection, SyncStatus.SYNCING)
        return WebhookResult(accepted=True, duplicate=False, enqueued=job is not None)
