from __future__ import annotations

import logging
from datetime import datetime

from .health.offline import OfflineDetector
from .models import SensorReading, Status, ensure_utc
from .state.store import SensorStore


logger = logging.getLogger(__name__)


def normalize_sensor_id(raw_sensor_id: str) -> str:
    """
    采集端上报的 sensor_id 可能带设备后缀：
    "DHT22_Temp/esp32-F83AA61F8A3C" -> "DHT22_Temp"
    """
    return raw_sensor_id.split("/", 1)[0].strip()


def apply_reading(
    store: SensorStore,
    detector: OfflineDetector,
    reading: SensorReading,
    now: datetime | None = None,
) -> Status:
    """
    新读数到达时的钩子：写入最新读数，并立即重新评估、写回状态。

    这样 alert/warning/ok 的变化不必等下一轮调度；通知仍只由 Dispatcher 发出。
    返回写入后存储中的状态。
    """
    now = now or detector.now()
    sensor_id = normalize_sensor_id(reading.sensor_id)
    reading = SensorReading(sensor_id=sensor_id, value=float(reading.value), timestamp=ensure_utc(reading.timestamp))

    store.record_reading(reading)
    state = store.load_sensor(sensor_id)
    status = detector.classify(state, now)
    if status == state.status:
        return status

    if not store.write_status(sensor_id, status, now, observed=state):
        logger.info("status write superseded on reading: sensor_id=%s computed=%s", sensor_id, status.value)
        return store.load_sensor(sensor_id).status

    logger.info(
        "status changed on reading: sensor_id=%s from=%s to=%s value=%s",
        sensor_id,
        state.status.value,
        status.value,
        reading.value,
    )
    return status
