"""共通Pydanticスキーマ。

複数エンドポイントで再利用するスキーマを定義する。
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ActionResponse(BaseModel):
    """副作用のみを持つアクションの結果。"""

    ok: bool = Field(default=True, description="処理が完了したか")


class ErrorResponse(BaseModel):
    """例外ハンドラが返すエラーボディ。"""

    detail: str
    code: str | None = None
