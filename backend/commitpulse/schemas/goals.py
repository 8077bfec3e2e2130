"""目標設定のPydanticスキーマ。"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class GoalsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    commits_per_day: int
    loc_per_day: int
    push_by_hour: int
    timezone: str
    updated_at: datetime | None = None


class GoalsUpdateRequest(BaseModel):
    """目標更新リクエスト。値は保存時に丸め・範囲制限される。"""

    commits_per_day: float = Field(description="1日のコミット数目標（0-100）")
    loc_per_day: float = Field(description="1日の変更行数目標（0-5000）")
    push_by_hour: float = Field(description="プッシュ期限時刻（0-23）")
    timezone: str = Field(description="IANAタイムゾーン名（例: Asia/Tokyo）")
