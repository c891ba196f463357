from __future__ import annotations

import logging
import sqlite3
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime

from ..errors import FatalStoreError, InvalidSensorDataError, SensorNotFoundError, TransientStoreError
from ..models import (
    SensorReading,
    SensorState,
    Status,
    ThresholdConfig,
    Thresholds,
    parse_optional_float,
)
from .schema import connect, ensure_schema, from_db_ts, to_db_ts


logger = logging.getLogger(__name__)


def _thresholds_from_row(row: sqlite3.Row) -> Thresholds:
    return Thresholds(
        min_limit=parse_optional_float(row["min_limit"], field="min_limit"),
        max_limit=parse_optional_float(row["max_limit"], field="max_limit"),
        warning_percent=parse_optional_float(row["warning_percent"], field="warning_percent"),
    )


def _row_matches(row: sqlite3.Row, observed: SensorState) -> bool:
    return (
        from_db_ts(row["last_seen_at"]) == observed.last_seen_at
        and parse_optional_float(row["latest_value"], field="latest_value") == observed.latest_value
        and Status.parse(row["status"]) == observed.status
    )


@dataclass(slots=True)
class SqliteSensorStore:
    """
    SQLite 参考实现：同时满足 ReadingStore / ThresholdStore / SensorStateStore。

    读取边界上做类型校验：数值字段不可解析时抛 InvalidSensorDataError，
    只影响该传感器本轮的处理。
    """

    sqlite_path: str

    def ensure_schema(self) -> None:
        with closing(connect(self.sqlite_path)) as conn:
            ensure_schema(conn)

    def list_sensor_ids(self) -> list[str]:
        try:
            with closing(connect(self.sqlite_path)) as conn:
                rows = conn.execute("SELECT sensor_id FROM sensors ORDER BY sensor_id").fetchall()
        except sqlite3.Error as e:
            raise FatalStoreError(f"cannot enumerate sensors: {type(e).__name__}: {e}") from e
        return [str(r["sensor_id"]) for r in rows]

    def load_sensor(self, sensor_id: str) -> SensorState:
        row = self._fetch_sensor_row(sensor_id)
        try:
            return SensorState(
                sensor_id=str(row["sensor_id"]),
                name=str(row["sensor_name"] or ""),
                unit=str(row["unit"] or ""),
                latest_value=parse_optional_float(row["latest_value"], field="latest_value"),
                last_seen_at=from_db_ts(row["last_seen_at"]),
                thresholds=_thresholds_from_row(row),
                status=Status.parse(row["status"]),
                status_updated_at=from_db_ts(row["status_updated_at"]),
                email_alert=bool(row["email_alert"]),
            )
        except ValueError as e:
            raise InvalidSensorDataError(f"invalid sensor row: {e}", sensor_id=sensor_id) from e

    def write_status(
        self,
        sensor_id: str,
        status: Status,
        updated_at: datetime,
        observed: SensorState | None = None,
    ) -> bool:
        """
        写回状态。

        observed 为计算该状态时读到的快照：读取与写入之间若有新读数或其它写入方改了状态，
        本次写入放弃并返回 False，避免用过期快照覆盖更新的结果。
        """
        try:
            with closing(connect(self.sqlite_path)) as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    row = conn.execute(
                        "SELECT latest_value, last_seen_at, status FROM sensors WHERE sensor_id = ?",
                        (sensor_id,),
                    ).fetchone()
                    if row is None:
                        raise SensorNotFoundError(sensor_id)
                    if observed is not None and not _row_matches(row, observed):
                        conn.execute("ROLLBACK")
                        return False
                    conn.execute(
                        "UPDATE sensors SET status = ?, status_updated_at = ? WHERE sensor_id = ?",
                        (status.value, to_db_ts(updated_at), sensor_id),
                    )
                    conn.execute("COMMIT")
                    return True
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
        except sqlite3.Error as e:
            raise TransientStoreError(f"status write failed: {type(e).__name__}: {e}", sensor_id=sensor_id) from e
        except ValueError as e:
            raise InvalidSensorDataError(f"invalid sensor row: {e}", sensor_id=sensor_id) from e

    def get_latest_reading(self, sensor_id: str) -> SensorReading | None:
        row = self._fetch_sensor_row(sensor_id)
        try:
            value = parse_optional_float(row["latest_value"], field="latest_value")
            ts = from_db_ts(row["last_seen_at"])
        except ValueError as e:
            raise InvalidSensorDataError(f"invalid reading: {e}", sensor_id=sensor_id) from e
        if value is None or ts is None:
            return None
        return SensorReading(sensor_id=sensor_id, value=value, timestamp=ts)

    def get_thresholds(self, sensor_id: str) -> ThresholdConfig:
        row = self._fetch_sensor_row(sensor_id)
        try:
            return ThresholdConfig(sensor_id=sensor_id, thresholds=_thresholds_from_row(row))
        except ValueError as e:
            raise InvalidSensorDataError(f"invalid thresholds: {e}", sensor_id=sensor_id) from e

    def record_reading(self, reading: SensorReading) -> None:
        """
        写入最新读数；乱序到达、比已存读数更旧的读数被忽略。
        """
        try:
            with closing(connect(self.sqlite_path)) as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    row = conn.execute(
                        "SELECT last_seen_at FROM sensors WHERE sensor_id = ?",
                        (reading.sensor_id,),
                    ).fetchone()
                    if row is None:
                        raise SensorNotFoundError(reading.sensor_id)
                    ts = to_db_ts(reading.timestamp)
                    if row["last_seen_at"] and str(row["last_seen_at"]) > ts:
                        logger.debug(
                            "stale reading ignored: sensor_id=%s timestamp=%s last_seen_at=%s",
                            reading.sensor_id,
                            ts,
                            row["last_seen_at"],
                        )
                    else:
                        conn.execute(
                            "UPDATE sensors SET latest_value = ?, last_seen_at = ? WHERE sensor_id = ?",
                            (reading.value, ts, reading.sensor_id),
                        )
                    conn.execute("COMMIT")
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
        except sqlite3.Error as e:
            raise TransientStoreError(
                f"reading write failed: {type(e).__name__}: {e}", sensor_id=reading.sensor_id
            ) from e

    def _fetch_sensor_row(self, sensor_id: str) -> sqlite3.Row:
        try:
            with closing(connect(self.sqlite_path)) as conn:
                row = conn.execute("SELECT * FROM sensors WHERE sensor_id = ?", (sensor_id,)).fetchone()
        except sqlite3.Error as e:
            raise TransientStoreError(f"sensor read failed: {type(e).__name__}: {e}", sensor_id=sensor_id) from e
        if row is None:
            raise SensorNotFoundError(sensor_id)
        return row
