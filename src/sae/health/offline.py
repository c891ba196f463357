from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from ..errors import StoreError
from ..models import SensorState, Status, ensure_utc, utc_now
from ..state.store import SensorStateStore
from .evaluator import DEFAULT_OFFLINE_AFTER, evaluate_state


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepReport:
    started_at: datetime
    sensors_checked: int
    transitioned: tuple[str, ...]
    errors: int


@dataclass(slots=True)
class OfflineDetector:
    """
    离线判定策略：为评估器提供 now 与离线阈值。

    除了在调度周期内参与评估，还可以作为独立的周期性 sweep 运行：
    传感器停止上报后，不必等新读数到来就会被改判为 offline。
    """

    offline_after: timedelta = DEFAULT_OFFLINE_AFTER
    clock: Callable[[], datetime] = field(default=utc_now)

    def now(self) -> datetime:
        return ensure_utc(self.clock())

    def classify(self, state: SensorState, now: datetime | None = None) -> Status:
        return evaluate_state(state, now or self.now(), self.offline_after)

    def is_stale(self, state: SensorState, now: datetime | None = None) -> bool:
        if state.last_seen_at is None:
            return True
        return (now or self.now()) - ensure_utc(state.last_seen_at) > self.offline_after

    def sweep(self, store: SensorStateStore, now: datetime | None = None) -> SweepReport:
        """
        只处理“陈旧”规则：last_seen_at 超时且当前状态不是 offline 的传感器写为 offline。
        基于读数值的重新分类交给 Dispatcher / 采集钩子。
        """
        now = now or self.now()
        sensor_ids = store.list_sensor_ids()

        transitioned: list[str] = []
        errors = 0
        for sensor_id in sensor_ids:
            try:
                state = store.load_sensor(sensor_id)
                if state.status == Status.OFFLINE or not self.is_stale(state, now):
                    continue
                if not store.write_status(sensor_id, Status.OFFLINE, now, observed=state):
                    logger.info("offline sweep superseded: sensor_id=%s", sensor_id)
                    continue
            except StoreError:
                errors += 1
                logger.exception("offline sweep failed: sensor_id=%s", sensor_id)
                continue

            transitioned.append(sensor_id)
            logger.info(
                "sensor went offline: sensor_id=%s previous_status=%s last_seen_at=%s",
                sensor_id,
                state.status.value,
                state.last_seen_at.isoformat() if state.last_seen_at else "-",
            )

        return SweepReport(
            started_at=now,
            sensors_checked=len(sensor_ids),
            transitioned=tuple(transitioned),
            errors=errors,
        )
