"""通知設定のPydanticスキーマ。"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class NotificationSettingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    connected: bool = True
    enabled: bool
    chat_id: str
    telegram_username: str | None = None
    timezone: str | None = None
    quiet_hours_start: int | None = None
    quiet_hours_end: int | None = None
    last_notified_at: datetime | None = None


class NotificationSettingsUpdateRequest(BaseModel):
    """通知設定更新リクエスト。静音時間帯は保存時に 0-23 へ丸められる。"""

    enabled: bool
    quiet_hours_start: float | None = Field(default=None, description="静音開始時刻")
    quiet_hours_end: float | None = Field(default=None, description="静音終了時刻")
    timezone: str | None = Field(default=None, description="タイムゾーン上書き")


class TelegramLinkRequest(BaseModel):
    """ボット経由で確認済みのチャットを登録するリクエスト。"""

    chat_id: str = Field(..., min_length=1)
    telegram_user_id: str | None = None
    telegram_username: str | None = None
    timezone: str | None = None
