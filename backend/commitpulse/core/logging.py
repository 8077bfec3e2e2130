"""ロギング設定。"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# 詳細ログが多すぎるライブラリ
_NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler.executors.default")

_handler: logging.Handler | None = None


def configure_logging(level: str = "INFO") -> None:
    """ルートロガーに標準出力ハンドラを設定する。

    複数回呼ばれてもハンドラは重複登録しない。

    Args:
        level: ログレベル名（"DEBUG", "INFO" など）。
    """
    global _handler

    root = logging.getLogger()
    root.setLevel(level.upper())

    if _handler is None:
        _handler = logging.StreamHandler(sys.stdout)
        _handler.setFormatter(logging.Formatter(LOG_FORMAT))
    if _handler not in root.handlers:
        root.addHandler(_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
