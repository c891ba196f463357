from __future__ import annotations

import sqlite3
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..errors import LedgerConflictError, TransientStoreError
from ..models import NotificationRecord, Status
from .schema import connect, ensure_schema, from_db_ts, to_db_ts


DEFAULT_COOLDOWN = timedelta(minutes=30)


@dataclass(slots=True)
class SqliteNotificationLedger:
    """
    通知台账（SQLite）。

    表 sensor_alert_log 的每一行是一次通知（或发送前的占位）：
    - state='pending'：claim 占位，发送成功后 confirm 为 'sent'，失败则 release 删除
    - state='sent'：已成功通知

    冷却判断同时计入 pending 与 sent，这样并发的另一轮调度在发送进行中也会被挡住。
    进程在 pending 状态崩溃时，该占位最多挡住一个冷却期（宁可少发，不重复发）。
    """

    sqlite_path: str
    cooldown: timedelta = DEFAULT_COOLDOWN

    def ensure_schema(self) -> None:
        with closing(connect(self.sqlite_path)) as conn:
            ensure_schema(conn)

    def should_notify(self, sensor_id: str, category: str, now: datetime) -> bool:
        cutoff = to_db_ts(now - self.cooldown)
        try:
            with closing(connect(self.sqlite_path)) as conn:
                row = conn.execute(
                    """
                    SELECT 1 FROM sensor_alert_log
                    WHERE sensor_id = ? AND category = ? AND notified_at >= ?
                    LIMIT 1
                    """,
                    (sensor_id, category, cutoff),
                ).fetchone()
        except sqlite3.Error as e:
            raise TransientStoreError(f"ledger read failed: {type(e).__name__}: {e}", sensor_id=sensor_id) from e
        return row is None

    def record_notification(
        self,
        sensor_id: str,
        category: str,
        status: Status,
        now: datetime,
        stint_start: datetime | None = None,
    ) -> None:
        self._insert_if_window_free(sensor_id, category, status, now, stint_start or now, state="sent")

    def claim(
        self,
        sensor_id: str,
        category: str,
        status: Status,
        now: datetime,
        stint_start: datetime | None = None,
    ) -> int:
        return self._insert_if_window_free(sensor_id, category, status, now, stint_start or now, state="pending")

    def confirm(self, claim_id: int) -> None:
        self._execute("UPDATE sensor_alert_log SET state = 'sent' WHERE id = ?", (claim_id,))

    def release(self, claim_id: int) -> None:
        self._execute("DELETE FROM sensor_alert_log WHERE id = ? AND state = 'pending'", (claim_id,))

    def record_failure(self, sensor_id: str, category: str, error: str, now: datetime) -> None:
        self._execute(
            """
            INSERT INTO notify_failures(sensor_id, category, error, created_at)
            VALUES(?, ?, ?, ?)
            """,
            (sensor_id, category, error, to_db_ts(now)),
        )

    def last_notified_at(self, sensor_id: str, category: str) -> datetime | None:
        try:
            with closing(connect(self.sqlite_path)) as conn:
                row = conn.execute(
                    """
                    SELECT MAX(notified_at) AS last FROM sensor_alert_log
                    WHERE sensor_id = ? AND category = ? AND state = 'sent'
                    """,
                    (sensor_id, category),
                ).fetchone()
        except sqlite3.Error as e:
            raise TransientStoreError(f"ledger read failed: {type(e).__name__}: {e}", sensor_id=sensor_id) from e
        return from_db_ts(row["last"]) if row else None

    def records(self, sensor_id: str, category: str) -> list[NotificationRecord]:
        with closing(connect(self.sqlite_path)) as conn:
            rows = conn.execute(
                """
                SELECT sensor_id, category, status, stint_start, notified_at FROM sensor_alert_log
                WHERE sensor_id = ? AND category = ? AND state = 'sent'
                ORDER BY notified_at
                """,
                (sensor_id, category),
            ).fetchall()
        records: list[NotificationRecord] = []
        for r in rows:
            stint_start = from_db_ts(r["stint_start"])
            notified_at = from_db_ts(r["notified_at"])
            assert stint_start is not None and notified_at is not None
            records.append(
                NotificationRecord(
                    sensor_id=str(r["sensor_id"]),
                    category=str(r["category"]),
                    status=Status.parse(r["status"]),
                    stint_start=stint_start,
                    notified_at=notified_at,
                )
            )
        return records

    def _insert_if_window_free(
        self,
        sensor_id: str,
        category: str,
        status: Status,
        now: datetime,
        stint_start: datetime,
        *,
        state: str,
    ) -> int:
        """
        原子 check-and-set：BEGIN IMMEDIATE 取得写锁后再检查冷却窗口并插入。
        拿不到写锁（另一轮正在占位）同样按冲突处理。
        """
        cutoff = to_db_ts(now - self.cooldown)
        try:
            with closing(connect(self.sqlite_path)) as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    row = conn.execute(
                        """
                        SELECT 1 FROM sensor_alert_log
                        WHERE sensor_id = ? AND category = ? AND notified_at >= ?
                        LIMIT 1
                        """,
                        (sensor_id, category, cutoff),
                    ).fetchone()
                    if row is not None:
                        raise LedgerConflictError(sensor_id, category)
                    cur = conn.execute(
                        """
                        INSERT INTO sensor_alert_log(sensor_id, category, status, stint_start, notified_at, state)
                        VALUES(?, ?, ?, ?, ?, ?)
                        """,
                        (sensor_id, category, status.value, to_db_ts(stint_start), to_db_ts(now), state),
                    )
                    conn.execute("COMMIT")
                    return int(cur.lastrowid)
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
        except sqlite3.OperationalError as e:
            msg = str(e).lower()
            if "locked" in msg or "busy" in msg:
                raise LedgerConflictError(sensor_id, category) from e
            raise TransientStoreError(f"ledger write failed: {type(e).__name__}: {e}", sensor_id=sensor_id) from e
        except sqlite3.Error as e:
            raise TransientStoreError(f"ledger write failed: {type(e).__name__}: {e}", sensor_id=sensor_id) from e

    def _execute(self, sql: str, params: tuple[object, ...]) -> None:
        try:
            with closing(connect(self.sqlite_path)) as conn:
                conn.execute(sql, params)
        except sqlite3.Error as e:
            raise TransientStoreError(f"ledger write failed: {type(e).__name__}: {e}") from e
