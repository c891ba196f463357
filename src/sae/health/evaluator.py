from __future__ import annotations

from datetime import datetime, timedelta

from ..models import SensorState, Status, ensure_utc


DEFAULT_OFFLINE_AFTER = timedelta(minutes=30)


def evaluate(
    value: float | None,
    min_limit: float | None,
    max_limit: float | None,
    warning_percent: float | None,
    last_seen_at: datetime | None,
    now: datetime,
    offline_after: timedelta = DEFAULT_OFFLINE_AFTER,
) -> Status:
    """
    纯函数：由读数、阈值与最后上报时间计算健康状态。

    判定顺序（顺序即语义）：
    1. 从未上报，或 now - last_seen_at 超过 offline_after -> offline（优先于一切）
    2. 没有读数 -> unknown
    3. min/max 任一未配置 -> unknown
    4. value < min 或 value > max -> alert（min > max 时必然 alert）
    5. 配置了 warning_percent：band = (max - min) * pct / 100，
       落在 [min, min + band) 或 (max - band, max] -> warning
    6. 其余 -> ok
    """
    if last_seen_at is None:
        return Status.OFFLINE
    if ensure_utc(now) - ensure_utc(last_seen_at) > offline_after:
        return Status.OFFLINE

    if value is None:
        return Status.UNKNOWN
    if min_limit is None or max_limit is None:
        return Status.UNKNOWN

    if value < min_limit or value > max_limit:
        return Status.ALERT

    if warning_percent is not None:
        band = (max_limit - min_limit) * warning_percent / 100
        if value < min_limit + band or value > max_limit - band:
            return Status.WARNING

    return Status.OK


def evaluate_state(
    state: SensorState,
    now: datetime,
    offline_after: timedelta = DEFAULT_OFFLINE_AFTER,
) -> Status:
    t = state.thresholds
    return evaluate(
        state.latest_value,
        t.min_limit,
        t.max_limit,
        t.warning_percent,
        state.last_seen_at,
        now,
        offline_after,
    )
