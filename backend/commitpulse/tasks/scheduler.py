"""APSchedulerの設定と管理。

定期実行タスクのスケジュール登録を行う。
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from commitpulse.config import settings

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def setup_jobs() -> None:
    """スケジューラにジョブを登録する。

    - sync_worker_job: SYNC_INTERVAL_MINUTES ごとに実行（デフォルト30分）
    - reminder_job: REMINDER_INTERVAL_MINUTES ごとに実行（デフォルト30分）
    """
    from commitpulse.tasks.github_sync import run_sync_worker_job
    from commitpulse.tasks.reminders import send_reminders_job

    # 同期ワーカー: 取りこぼしたWebhookや失敗ジョブの再試行を拾う
    scheduler.add_job(
        run_sync_worker_job,
        trigger=IntervalTrigger(minutes=settings.SYNC_INTERVAL_MINUTES),
        id="sync_worker_job",
        name="GitHub Sync Worker",
        replace_existing=True,
        max_instances=1,
    )
    logger.info(
        "Registered sync_worker_job: every %d minutes",
        settings.SYNC_INTERVAL_MINUTES,
    )

    scheduler.add_job(
        send_reminders_job,
        trigger=IntervalTrigger(minutes=settings.REMINDER_INTERVAL_MINUTES),
        id="reminder_job",
        name="Telegram Reminders",
        replace_existing=True,
        max_instances=1,
    )
    logger.info(
        "Registered reminder_job: every %d minutes",
        settings.REMINDER_INTERVAL_MINUTES,
    )

    logger.info("All scheduled jobs registered")
