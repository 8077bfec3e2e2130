"""連続コミット日数（ストリーク）計算モジュール。

イベント時刻の集合とアンカー日から「現在のストリーク」を求める純粋関数を
提供する。すべての判定は暦日キー上で行い、経過ミリ秒の算術は使わない
（DST切り替え日に日数を二重計上・取りこぼししないため）。
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass
from typing import Any

from commitpulse.core.dates import (
    DAY_MS,
    date_key_to_day_stamp,
    day_stamp_to_date_key,
    to_date_key,
)


@dataclass(frozen=True)
class StreakComputation:
    """ストリーク計算結果。

    Attributes:
        anchor_date_key: アンカー日の日付キー。
        streak_days: ストリーク日数（0以上）。
        qualifying_date_key: ストリークの最新日（アンカー日または前日）。
        streak_start_date_key: ストリークの最古日。0日の場合は None。
        first_gap_date_key: 連続を途切れさせた最初の空白日。0日の場合は None。
        newest_date_key: 入力中の最新日付キー（診断用）。
        oldest_date_key: 入力中の最古日付キー（診断用）。
    """

    anchor_date_key: str
    streak_days: int
    qualifying_date_key: str | None
    streak_start_date_key: str | None
    first_gap_date_key: str | None
    newest_date_key: str | None
    oldest_date_key: str | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def compute_current_streak_from_date_keys(
    date_keys: Iterable[str],
    anchor_date_key: str,
) -> StreakComputation:
    """日付キーの集合から現在のストリークを計算する。

    1. 日付キーを重複排除する（同じ日の複数コミットは1日）。
    2. アンカー日にイベントがあればアンカー日、なければ前日にイベントが
       あれば前日を起点とする。どちらもなければ 0 で終了する。
    3. 起点から1日ずつ遡り、イベントのない最初の日まで数える。

    Args:
        date_keys: 日付キーのイテラブル。解析できない値は無視する。
        anchor_date_key: アンカー日の日付キー。

    Returns:
        StreakComputation。

    Raises:
        ValueError: アンカー日の日付キーが解析できない場合。
    """
    anchor_stamp = date_key_to_day_stamp(anchor_date_key)
    if anchor_stamp is None:
        raise ValueError(f"Invalid anchor date key: {anchor_date_key!r}")

    active_days: set[int] = set()
    for key in date_keys:
        stamp = date_key_to_day_stamp(key)
        if stamp is not None:
            active_days.add(stamp)

    newest = day_stamp_to_date_key(max(active_days)) if active_days else None
    oldest = day_stamp_to_date_key(min(active_days)) if active_days else None

    if anchor_stamp in active_days:
        qualifying = anchor_stamp
    elif anchor_stamp - DAY_MS in active_days:
        qualifying = anchor_stamp - DAY_MS
    else:
        # アンカー日・前日ともに空白 -> 2日以上の空白はストリークを復活させない
        return StreakComputation(
            anchor_date_key=day_stamp_to_date_key(anchor_stamp),
            streak_days=0,
            qualifying_date_key=None,
            streak_start_date_key=None,
            first_gap_date_key=None,
            newest_date_key=newest,
            oldest_date_key=oldest,
        )

    cursor = qualifying
    streak_days = 0
    while cursor in active_days:
        streak_days += 1
        cursor -= DAY_MS

    return StreakComputation(
        anchor_date_key=day_stamp_to_date_key(anchor_stamp),
        streak_days=streak_days,
        qualifying_date_key=day_stamp_to_date_key(qualifying),
        streak_start_date_key=day_stamp_to_date_key(cursor + DAY_MS),
        first_gap_date_key=day_stamp_to_date_key(cursor),
        newest_date_key=newest,
        oldest_date_key=oldest,
    )


def compute_current_streak(
    timestamps_ms: Iterable[int],
    time_zone: str,
    anchor_ms: int,
) -> StreakComputation:
    """イベント時刻（エポックミリ秒）から現在のストリークを計算する。

    Args:
        timestamps_ms: コミット時刻のイテラブル。
        time_zone: 日付キー算出に使うIANAタイムゾーン。
        anchor_ms: アンカー時刻（通常は現在時刻）。

    Returns:
        StreakComputation。
    """
    date_keys = {to_date_key(ts, time_zone) for ts in timestamps_ms}
    return compute_current_streak_from_date_keys(
        date_keys,
        to_date_key(anchor_ms, time_zone),
    )


def touches_lookback_boundary(
    streak_start_date_key: str | None,
    lookback_start_date_key: str | None,
) -> bool:
    """ストリークの最古日が取得済み期間の開始日以前に達しているか判定する。

    True の場合、取得期間が足りずにストリークが途中で切られている可能性がある。
    """
    start = date_key_to_day_stamp(streak_start_date_key)
    boundary = date_key_to_day_stamp(lookback_start_date_key)
    if start is None or boundary is None:
        return False
    return start <= boundary
