"""GitHub接続関連のPydanticスキーマ。"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from commitpulse.models.enums import InstallationAccountType, RepoSelectionMode


class ConnectionStatusResponse(BaseModel):
    """GitHub接続状態レスポンス。未接続時は ``connected=False`` のみ意味を持つ。"""

    connected: bool
    auth_mode: str | None = None
    login: str | None = None
    installation_id: int | None = None
    installation_account_login: str | None = None
    installation_account_type: str | None = None
    repo_selection_mode: str | None = None
    sync_status: str | None = None
    last_sync: str | None = None
    last_synced_at: datetime | None = None
    synced_from_at: datetime | None = None
    synced_to_at: datetime | None = None
    last_webhook_at: datetime | None = None
    last_error_code: str | None = None
    last_error_message: str | None = None
    streak_days: int | None = None
    has_pending_sync: bool = False
    active_backfill_lookback_days: int | None = None


class SetupCompleteRequest(BaseModel):
    """GitHub App インストール完了リクエスト。"""

    installation_id: int = Field(..., gt=0, description="GitHub App インストールID")
    installation_account_login: str = Field(..., min_length=1)
    installation_account_type: InstallationAccountType
    repo_selection_mode: RepoSelectionMode = RepoSelectionMode.SELECTED


class SetupCompleteResponse(BaseModel):
    connected: bool


class SyncActionResponse(BaseModel):
    """同期系アクションのレスポンス。"""

    status: str = Field(description="接続の同期ステータス")
    message: str


class WebhookResponse(BaseModel):
    accepted: bool
    duplicate: bool
