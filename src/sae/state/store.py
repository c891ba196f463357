from __future__ import annotations

from datetime import datetime
from typing import Protocol

from ..models import SensorReading, SensorState, Status, ThresholdConfig


class ReadingStore(Protocol):
    """
    读数存储（外部采集链路写入）：每个传感器最新的 value + timestamp。
    """

    def get_latest_reading(self, sensor_id: str) -> SensorReading | None: ...

    def record_reading(self, reading: SensorReading) -> None: ...


class ThresholdStore(Protocol):
    """阈值存储：对核心只读。"""

    def get_thresholds(self, sensor_id: str) -> ThresholdConfig: ...


class SensorStateStore(Protocol):
    """
    传感器状态存储：
    - list_sensor_ids 失败视为整轮致命错误（FatalStoreError）
    - load_sensor / write_status 失败只影响单个传感器（TransientStoreError）
    - write_status 传入 observed 时为 compare-and-set：快照已过期则不写入，返回 False
    """

    def ensure_schema(self) -> None: ...

    def list_sensor_ids(self) -> list[str]: ...

    def load_sensor(self, sensor_id: str) -> SensorState: ...

    def write_status(
        self,
        sensor_id: str,
        status: Status,
        updated_at: datetime,
        observed: SensorState | None = None,
    ) -> bool: ...


class SensorStore(ReadingStore, ThresholdStore, SensorStateStore, Protocol):
    """读数 + 阈值 + 状态的完整存储契约（采集钩子依赖它）。"""


class NotificationLedger(Protocol):
    """
    通知台账：按 (sensor, category) 记录最近一次通知，用于冷却期去重。

    claim/confirm/release 把“检查 + 占位”合成一次原子操作，
    避免并发的两轮调度对同一传感器重复发送。
    """

    def ensure_schema(self) -> None: ...

    def should_notify(self, sensor_id: str, category: str, now: datetime) -> bool: ...

    def record_notification(
        self,
        sensor_id: str,
        category: str,
        status: Status,
        now: datetime,
        stint_start: datetime | None = None,
    ) -> None: ...

    def claim(
        self,
        sensor_id: str,
        category: str,
        status: Status,
        now: datetime,
        stint_start: datetime | None = None,
    ) -> int: ...

    def confirm(self, claim_id: int) -> None: ...

    def release(self, claim_id: int) -> None: ...

    def record_failure(self, sensor_id: str, category: str, error: str, now: datetime) -> None: ...

    def last_notified_at(self, sensor_id: str, category: str) -> datetime | None: ...
