from __future__ import annotations

import sqlite3
from datetime import datetime

from ..models import ensure_utc, parse_rfc3339_datetime


# sensors/devices/users/team_invitations 由外部 CRUD 维护，这里建表只为本地运行与测试。
SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS devices (
        device_id TEXT PRIMARY KEY,
        owner_id TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sensors (
        sensor_id TEXT PRIMARY KEY,
        sensor_name TEXT,
        device_id TEXT,
        unit TEXT,
        latest_value REAL,
        last_seen_at TEXT,
        min_limit REAL,
        max_limit REAL,
        warning_percent REAL,
        email_alert INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'unknown',
        status_updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS team_invitations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sensor_id TEXT NOT NULL,
        principal_id TEXT,
        email TEXT,
        role TEXT NOT NULL DEFAULT 'viewer',
        status TEXT NOT NULL DEFAULT 'pending',
        email_alert INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sensor_alert_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sensor_id TEXT NOT NULL,
        category TEXT NOT NULL,
        status TEXT NOT NULL,
        stint_start TEXT NOT NULL,
        notified_at TEXT NOT NULL,
        state TEXT NOT NULL DEFAULT 'sent'
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_sensor_alert_log_recent
    ON sensor_alert_log(sensor_id, category, notified_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS notify_failures (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sensor_id TEXT NOT NULL,
        category TEXT NOT NULL,
        error TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
)


def connect(sqlite_path: str) -> sqlite3.Connection:
    """
    每次操作独立建连（工作线程之间不共享连接）。

    isolation_level=None：默认自动提交，需要原子性的地方显式 BEGIN IMMEDIATE。
    """
    conn = sqlite3.connect(sqlite_path, timeout=10.0, isolation_level=None)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.row_factory = sqlite3.Row
    return conn


def ensure_schema(conn: sqlite3.Connection) -> None:
    for statement in SCHEMA_STATEMENTS:
        conn.execute(statement)


def to_db_ts(dt: datetime) -> str:
    # 固定微秒精度，保证 TEXT 列按字典序比较即按时间比较。
    return ensure_utc(dt).isoformat(timespec="microseconds")


def from_db_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return parse_rfc3339_datetime(str(value))
