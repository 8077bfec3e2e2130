"""GitHubバックグラウンド同期タスク。

APSchedulerから呼ばれる定期実行と、API・Webhook からの
バックグラウンド起動の両方で同期ワーカーを1回分走らせる。
"""

from __future__ import annotations

import logging

from commitpulse.services.sync_worker import SyncWorker

logger = logging.getLogger(__name__)


async def run_sync_worker_job() -> None:
    """キューに溜まった同期ジョブを処理する。

    ジョブ単位の失敗はワーカー内でキューに記録される。ここでは
    想定外の失敗のみをログに残し、スケジューラを止めない。
    """
    logger.info("Starting sync worker run")
    try:
        processed = await SyncWorker().run()
    except Exception:
        logger.exception("Sync worker run failed")
        return
    logger.info("Sync worker run finished: %d jobs processed", processed)
