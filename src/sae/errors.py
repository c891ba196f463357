from __future__ import annotations


class SaeError(Exception):
    """引擎内所有显式错误的基类。"""


class ConfigError(SaeError, ValueError):
    pass


class StoreError(SaeError):
    pass


class TransientStoreError(StoreError):
    """
    单个传感器的读写失败：记录日志并跳过，下一个周期自动重试。
    """

    def __init__(self, message: str, *, sensor_id: str | None = None) -> None:
        super().__init__(message)
        self.sensor_id = sensor_id


class InvalidSensorDataError(TransientStoreError):
    """存储中的数值字段无法解析（读取边界校验失败）。"""


class SensorNotFoundError(StoreError):
    def __init__(self, sensor_id: str) -> None:
        super().__init__(f"sensor not found: {sensor_id}")
        self.sensor_id = sensor_id


class FatalStoreError(StoreError):
    """
    整轮无法访问存储（例如无法枚举传感器）：中止本轮并交给上层监控。
    """


class DispatchError(SaeError):
    """邮件传输失败；不写入通知记录，下一个周期仍可通知。"""


class LedgerConflictError(SaeError):
    """
    并发 check-and-set 冲突：失败方视为“已通知”，绝不重复发送。
    """

    def __init__(self, sensor_id: str, category: str) -> None:
        super().__init__(f"notification window already taken: sensor_id={sensor_id} category={category}")
        self.sensor_id = sensor_id
        self.category = category
