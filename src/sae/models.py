from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def parse_rfc3339_datetime(value: str) -> datetime:
    """
    解析常见的 RFC3339/ISO8601 时间串为带 tzinfo 的 UTC datetime。

    兼容：
    - 2026-02-10T12:34:56Z
    - 2026-02-10T12:34:56+00:00
    - 2026-02-10T12:34:56.123Z
    - 2026-02-10 12:34:56（无时区，按 UTC 处理）
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    return ensure_utc(dt)


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def parse_optional_float(value: Any, *, field: str) -> float | None:
    """
    存储读取边界上的数值校验：None 保持 None，其余必须能转换为有限 float。
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"{field}: expected number, got bool")
    if isinstance(value, str) and not value.strip():
        return None
    try:
        f = float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{field}: expected number, got {value!r}") from e
    if f != f or f in (float("inf"), float("-inf")):
        raise ValueError(f"{field}: expected finite number, got {value!r}")
    return f


class Status(str, enum.Enum):
    UNKNOWN = "unknown"
    OK = "ok"
    WARNING = "warning"
    ALERT = "alert"
    OFFLINE = "offline"

    @classmethod
    def parse(cls, value: str | None) -> Status:
        if not value:
            return cls.UNKNOWN
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


class Role(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    VIEWER = "viewer"

    @classmethod
    def parse(cls, value: str | None) -> Role:
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.VIEWER


CATEGORY_VALUE = "value"
CATEGORY_OFFLINE = "offline"


@dataclass(frozen=True, slots=True)
class Thresholds:
    """
    单个传感器的阈值配置。

    三个字段都可能为空：
    - min_limit / max_limit 任一为空，状态只能是 unknown
    - warning_percent 为空则不存在 warning 档位
    """

    min_limit: float | None = None
    max_limit: float | None = None
    warning_percent: float | None = None

    def is_complete(self) -> bool:
        return self.min_limit is not None and self.max_limit is not None

    def warning_band(self) -> float | None:
        if not self.is_complete() or self.warning_percent is None:
            return None
        assert self.min_limit is not None and self.max_limit is not None
        return (self.max_limit - self.min_limit) * self.warning_percent / 100


@dataclass(frozen=True, slots=True)
class ThresholdConfig:
    sensor_id: str
    thresholds: Thresholds


@dataclass(frozen=True, slots=True)
class SensorReading:
    sensor_id: str
    value: float
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class SensorState:
    """
    传感器当前状态快照。

    value/last_seen_at 由外部采集链路写入；status/status_updated_at 归评估器所有。
    """

    sensor_id: str
    name: str
    unit: str
    latest_value: float | None
    last_seen_at: datetime | None
    thresholds: Thresholds
    status: Status
    status_updated_at: datetime | None
    email_alert: bool = False

    @property
    def display_name(self) -> str:
        return self.name or self.sensor_id


@dataclass(frozen=True, slots=True)
class NotificationRecord:
    sensor_id: str
    category: str
    status: Status
    stint_start: datetime
    notified_at: datetime

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "sensor_id": self.sensor_id,
            "category": self.category,
            "status": self.status.value,
            "stint_start": self.stint_start.isoformat(),
            "notified_at": self.notified_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class Recipient:
    principal_id: str
    email: str
    alert_enabled: bool
    role: Role
