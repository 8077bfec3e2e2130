"""日付・タイムゾーンユーティリティ。

絶対時刻（エポックミリ秒）を指定タイムゾーンの暦日キー（"YYYY-MM-DD"）に
変換する純粋関数群を提供する。ストリーク計算・日次集計・リマインダー判定の
すべてがこのモジュールの日付キーを基準とする。
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000

_ISO_DATE_KEY = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_SLASH_DATE_KEY = re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})$")


# ---------------------------------------------------------------------------
# タイムゾーン
# ---------------------------------------------------------------------------

@lru_cache(maxsize=256)
def _zone(time_zone: str) -> ZoneInfo:
    return ZoneInfo(time_zone)


def is_valid_timezone(time_zone: str | None) -> bool:
    """IANAタイムゾーン名として解決可能か判定する。"""
    if not time_zone:
        return False
    try:
        _zone(time_zone)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def resolve_timezone(time_zone: str | None, default: str = "UTC") -> str:
    """有効なタイムゾーン名を返す。不正値の場合は ``default`` に落とす。"""
    return time_zone if is_valid_timezone(time_zone) else default


# ---------------------------------------------------------------------------
# エポックミリ秒 <-> datetime
# ---------------------------------------------------------------------------

def to_epoch_ms(value: datetime) -> int:
    """aware datetime をエポックミリ秒に変換する。naive は UTC とみなす。"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def from_epoch_ms(timestamp_ms: int) -> datetime:
    """エポックミリ秒を UTC の aware datetime に変換する。"""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


def now_ms() -> int:
    return to_epoch_ms(datetime.now(timezone.utc))


def parse_github_datetime(value: str | None) -> datetime | None:
    """GitHub API の ISO8601 文字列（末尾 "Z"）をパースする。失敗時は None。"""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# 日付キー
# ---------------------------------------------------------------------------

def to_date_key(timestamp_ms: int, time_zone: str = "UTC") -> str:
    """絶対時刻を指定タイムゾーンの暦日キー（YYYY-MM-DD）に変換する。

    UTC日付の切り捨てではなく、タイムゾーンの暦変換（DST含む）で
    ローカル日付を求めるため、ローカル深夜付近のコミットも正しい日に入る。

    Args:
        timestamp_ms: エポックミリ秒。
        time_zone: IANAタイムゾーン名。

    Returns:
        "YYYY-MM-DD" 形式の日付キー。
    """
    local = from_epoch_ms(timestamp_ms).astimezone(_zone(time_zone))
    return local.date().isoformat()


def hour_in_timezone(timestamp_ms: int, time_zone: str = "UTC") -> int:
    """絶対時刻の、指定タイムゾーンにおける時（0-23）を返す。"""
    return from_epoch_ms(timestamp_ms).astimezone(_zone(time_zone)).hour


def date_key_to_day_stamp(date_key: str | None) -> int | None:
    """日付キーを UTC 0時基準のエポックミリ秒に変換する。

    "YYYY-MM-DD" と "YYYY/MM/DD" を受け付ける。解析できない入力は
    例外ではなく None を返すので、呼び出し側は黙ってフィルタできる。

    Args:
        date_key: 日付キー文字列。

    Returns:
        日単位の算術に使える整数。解析不能なら None。
    """
    if not date_key:
        return None
    text = date_key.strip()
    match = _ISO_DATE_KEY.match(text) or _SLASH_DATE_KEY.match(text)
    if match is None:
        return None
    year, month, day = (int(part) for part in match.groups())
    try:
        parsed = date(year, month, day)
    except ValueError:
        return None
    midnight = datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)
    return to_epoch_ms(midnight)


def day_stamp_to_date_key(day_stamp: int) -> str:
    """``date_key_to_day_stamp`` の逆変換。"""
    return from_epoch_ms(day_stamp).date().isoformat()


def shift_date_key(date_key: str, days: int) -> str:
    """日付キーを暦日単位で ``days`` 日ずらす（経過ミリ秒ではなく暦で計算）。"""
    stamp = date_key_to_day_stamp(date_key)
    if stamp is None:
        raise ValueError(f"Invalid date key: {date_key!r}")
    return day_stamp_to_date_key(stamp + days * DAY_MS)


# ---------------------------------------------------------------------------
# その他
# ---------------------------------------------------------------------------

def clamp(value: int, minimum: int, maximum: int) -> int:
    return min(maximum, max(minimum, value))


def format_last_sync(value: datetime | None) -> str | None:
    """最終同期時刻を表示用に整形する（例: "Feb 15, 09:30 AM"）。"""
    if value is None:
        return None
    return value.strftime("%b %d, %I:%M %p")

