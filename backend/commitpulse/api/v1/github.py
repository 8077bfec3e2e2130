"""GitHub接続エンドポイント。

接続状態、App セットアップ完了、手動同期、再計算、切断、
Webhook 受信のAPIを提供する。
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from commitpulse.api.deps import get_current_user, get_session
from commitpulse.core.exceptions import AuthenticationError, BadRequestError
from commitpulse.core.security import verify_webhook_signature
from commitpulse.models import User
from commitpulse.schemas.common import ActionResponse, ErrorResponse
from commitpulse.schemas.github import (
    ConnectionStatusResponse,
    SetupCompleteRequest,
    SetupCompleteResponse,
    SyncActionResponse,
    WebhookResponse,
)
from commitpulse.services.connection_service import ConnectionService
from commitpulse.services.webhook_service import WebhookEvent, WebhookService
from commitpulse.tasks.github_sync import run_sync_worker_job

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# 接続状態
# ---------------------------------------------------------------------------


@router.get(
    "/connection",
    response_model=ConnectionStatusResponse,
    summary="GitHub接続状態",
)
async def get_connection_status(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> ConnectionStatusResponse:
    """GitHub接続状態と未解決の同期ジョブ有無を返す。"""
    status = await ConnectionService(session).get_status(current_user.user_id)
    return ConnectionStatusResponse(**status)


@router.delete(
    "/connection",
    response_model=ActionResponse,
    summary="GitHub切断",
)
async def disconnect_github(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> ActionResponse:
    """接続と保存済みのコミット・集計・ジョブを削除する。"""
    removed = await ConnectionService(session).disconnect(current_user.user_id)
    return ActionResponse(ok=removed)


# ---------------------------------------------------------------------------
# アクション
# ---------------------------------------------------------------------------


@router.post(
    "/setup",
    response_model=SetupCompleteResponse,
    summary="GitHub App セットアップ完了",
)
async def complete_setup(
    request: SetupCompleteRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> SetupCompleteResponse:
    """インストール情報で接続を作成し、初回バックフィルを開始する。

    Args:
        request: インストールID・アカウント情報。
        background_tasks: FastAPIバックグラウンドタスク。
        current_user: 認証済みユーザー。
        session: データベースセッション。

    Returns:
        セットアップ結果。
    """
    await ConnectionService(session).complete_app_setup(
        user_id=current_user.user_id,
        installation_id=request.installation_id,
        account_login=request.installation_account_login,
        account_type=request.installation_account_type,
        repo_selection_mode=request.repo_selection_mode,
    )
    # ワーカーが投入済みジョブを参照できるよう明示的にcommit
    await session.commit()
    background_tasks.add_task(run_sync_worker_job)
    return SetupCompleteResponse(connected=True)


@router.post(
    "/sync",
    response_model=SyncActionResponse,
    status_code=202,
    summary="手動同期",
)
async def trigger_sync(
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> SyncActionResponse:
    """reconcile ジョブを投入し、ワーカーをバックグラウンドで起動する。"""
    connection = await ConnectionService(session).request_sync(current_user.user_id)
    await session.commit()
    background_tasks.add_task(run_sync_worker_job)

    logger.info("Manual sync requested for user_id=%d", current_user.user_id)
    return SyncActionResponse(
        status=connection.sync_status,
        message="Sync queued",
    )


@router.post(
    "/recompute",
    response_model=SyncActionResponse,
    status_code=202,
    summary="再計算",
)
async def recompute_from_scratch(
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> SyncActionResponse:
    """保存済みデータを消去し、初回バックフィルからやり直す。"""
    connection = await ConnectionService(session).recompute_from_scratch(
        current_user.user_id
    )
    await session.commit()
    background_tasks.add_task(run_sync_worker_job)
    return SyncActionResponse(
        status=connection.sync_status,
        message="Recompute queued",
    )


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={401: {"model": ErrorResponse}, 400: {"model": ErrorResponse}},
    summary="GitHub Webhook 受信",
)
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_hub_signature_256: str | None = Header(default=None),
    x_github_delivery: str | None = Header(default=None),
    x_github_event: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> WebhookResponse:
    """署名を検証して配信を記録し、必要なら同期ジョブを投入する。

    Raises:
        AuthenticationError: 署名が一致しない場合。
        BadRequestError: 配信ID・イベント名が無い、または本体がJSONでない場合。
    """
    body = await request.body()
    if not verify_webhook_signature(body, x_hub_signature_256):
        logger.warning("Rejected webhook with invalid signature")
        raise AuthenticationError("Invalid webhook signature")

    if not x_github_delivery or not x_github_event:
        raise BadRequestError("Missing X-GitHub-Delivery or X-GitHub-Event header")

    try:
        payload = json.loads(body)
    except ValueError:
        raise BadRequestError("Webhook body is not valid JSON")
    if not isinstance(payload, dict):
        raise BadRequestError("Webhook body must be a JSON object")

    event = WebhookEvent.from_payload(x_github_delivery, x_github_event, payload)
    result = await WebhookService(session).ingest(event)
    await session.commit()

    if result.enqueued:
        background_tasks.add_task(run_sync_worker_job)

    return WebhookResponse(accepted=result.accepted, duplicate=result.duplicate)
