from __future__ import annotations

import sqlite3
from contextlib import closing
from dataclasses import dataclass

from ..errors import TransientStoreError
from ..models import Recipient, Role
from ..state.schema import connect


@dataclass(slots=True)
class SqliteAccessResolver:
    """
    基于 sensors -> devices -> users 与 team_invitations 的只读查询。

    只有 status='accepted' 的邀请会被返回；email_alert 映射为 Recipient.alert_enabled。
    """

    sqlite_path: str

    def get_owner(self, sensor_id: str) -> Recipient | None:
        row = self._fetch_one(
            """
            SELECT u.id AS id, u.email AS email
            FROM sensors s
            JOIN devices d ON d.device_id = s.device_id
            JOIN users u ON u.id = d.owner_id
            WHERE s.sensor_id = ?
            """,
            (sensor_id,),
            sensor_id=sensor_id,
        )
        if row is None:
            return None
        return Recipient(
            principal_id=str(row["id"]),
            email=str(row["email"] or ""),
            alert_enabled=True,
            role=Role.OWNER,
        )

    def list_accepted_recipients(self, sensor_id: str) -> list[Recipient]:
        try:
            with closing(connect(self.sqlite_path)) as conn:
                rows = conn.execute(
                    """
                    SELECT principal_id, email, role, email_alert
                    FROM team_invitations
                    WHERE sensor_id = ? AND status = 'accepted'
                    ORDER BY id
                    """,
                    (sensor_id,),
                ).fetchall()
        except sqlite3.Error as e:
            raise TransientStoreError(f"access query failed: {type(e).__name__}: {e}", sensor_id=sensor_id) from e
        return [
            Recipient(
                principal_id=str(r["principal_id"] or r["email"] or ""),
                email=str(r["email"] or ""),
                alert_enabled=bool(r["email_alert"]),
                role=Role.parse(r["role"]),
            )
            for r in rows
        ]

    def _fetch_one(self, sql: str, params: tuple[object, ...], *, sensor_id: str) -> sqlite3.Row | None:
        try:
            with closing(connect(self.sqlite_path)) as conn:
                return conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise TransientStoreError(f"access query failed: {type(e).__name__}: {e}", sensor_id=sensor_id) from e
