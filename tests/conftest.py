import os
import sqlite3
import sys
from datetime import datetime

import pytest


PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC_DIR = os.path.join(PROJECT_ROOT, "src")

if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


from sae.state.schema import connect, ensure_schema, to_db_ts  # noqa: E402


class Seeder:
    """
    直接写 SQLite 的测试辅助：模拟外部 CRUD（注册传感器、设备归属、团队邀请）。
    """

    def __init__(self, sqlite_path: str) -> None:
        self.sqlite_path = sqlite_path
        conn = connect(sqlite_path)
        try:
            ensure_schema(conn)
        finally:
            conn.close()

    def _execute(self, sql: str, params: tuple) -> None:
        conn = sqlite3.connect(self.sqlite_path)
        try:
            with conn:
                conn.execute(sql, params)
        finally:
            conn.close()

    def owner(self, device_id: str, user_id: str, email: str) -> None:
        self._execute("INSERT OR REPLACE INTO users(id, email) VALUES(?, ?)", (user_id, email))
        self._execute("INSERT OR REPLACE INTO devices(device_id, owner_id) VALUES(?, ?)", (device_id, user_id))

    def sensor(
        self,
        sensor_id: str,
        *,
        device_id: str = "dev-1",
        name: str = "",
        unit: str = "°F",
        value: object = None,
        last_seen_at: datetime | None = None,
        min_limit: object = None,
        max_limit: object = None,
        warning_percent: object = None,
        email_alert: bool = True,
        status: str = "unknown",
    ) -> None:
        self._execute(
            """
            INSERT OR REPLACE INTO sensors(
                sensor_id, sensor_name, device_id, unit, latest_value, last_seen_at,
                min_limit, max_limit, warning_percent, email_alert, status
            ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                sensor_id,
                name or sensor_id,
                device_id,
                unit,
                value,
                to_db_ts(last_seen_at) if last_seen_at else None,
                min_limit,
                max_limit,
                warning_percent,
                1 if email_alert else 0,
                status,
            ),
        )

    def invite(
        self,
        sensor_id: str,
        email: str,
        *,
        status: str = "accepted",
        email_alert: bool = True,
        role: str = "viewer",
        principal_id: str | None = None,
    ) -> None:
        self._execute(
            """
            INSERT INTO team_invitations(sensor_id, principal_id, email, role, status, email_alert)
            VALUES(?, ?, ?, ?, ?, ?)
            """,
            (sensor_id, principal_id, email, role, status, 1 if email_alert else 0),
        )


@pytest.fixture()
def db_path(tmp_path) -> str:  # noqa: ANN001
    return str(tmp_path / "state.sqlite3")


@pytest.fixture()
def seeder(db_path: str) -> Seeder:
    return Seeder(db_path)
