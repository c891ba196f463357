import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sae.access.sqlite_resolver import SqliteAccessResolver
from sae.dispatcher import Dispatcher
from sae.health.offline import OfflineDetector
from sae.ingest import apply_reading
from sae.models import SensorReading, SensorState, Status
from sae.state.sqlite_ledger import SqliteNotificationLedger
from sae.state.sqlite_store import SqliteSensorStore


T0 = datetime(2026, 2, 10, 0, 0, tzinfo=UTC)


@dataclass
class _RecordingTransport:
    sent: list[tuple[list[str], str]] = field(default_factory=list)

    def send(self, recipients: list[str], subject: str, body: str) -> None:  # noqa: ARG002
        self.sent.append((list(recipients), subject))


@dataclass
class _FailingTransport:
    def send(self, recipients: list[str], subject: str, body: str) -> None:  # noqa: ARG002
        raise RuntimeError("boom")


def _build(db_path: str, transport) -> Dispatcher:  # noqa: ANN001
    return Dispatcher(
        store=SqliteSensorStore(db_path),
        ledger=SqliteNotificationLedger(db_path),
        resolver=SqliteAccessResolver(db_path),
        transport=transport,
    )


def test_end_to_end_against_sqlite(db_path, seeder) -> None:  # noqa: ANN001
    """
    端到端：
    - 第一次 run_once 把超限传感器写为 alert 并通知 owner + 协作者
    - 冷却期内第二次 run_once 不会重复通知
    """
    seeder.owner("dev-1", "u1", "owner@example.com")
    seeder.sensor("fridge", name="Fridge", value=45, last_seen_at=T0, min_limit=32, max_limit=40, warning_percent=10)
    seeder.sensor("room", name="Room", value=36, last_seen_at=T0, min_limit=32, max_limit=40, warning_percent=10)
    seeder.invite("fridge", "team@example.com")

    transport = _RecordingTransport()
    dispatcher = _build(db_path, transport)

    report1 = dispatcher.run_once(now=T0 + timedelta(minutes=1))
    assert report1.notify_successes == 1
    assert report1.recipients_notified == 2
    assert transport.sent == [(["owner@example.com", "team@example.com"], "Critical: Fridge needs attention")]

    store = SqliteSensorStore(db_path)
    assert store.load_sensor("fridge").status is Status.ALERT
    assert store.load_sensor("room").status is Status.OK

    report2 = dispatcher.run_once(now=T0 + timedelta(minutes=10))
    assert report2.suppressed_cooldown == 1
    assert len(transport.sent) == 1

    records = SqliteNotificationLedger(db_path).records("fridge", "value")
    assert len(records) == 1
    assert records[0].status is Status.ALERT
    assert records[0].stint_start == T0 + timedelta(minutes=1)


def test_notify_failure_is_recorded(db_path, seeder, caplog) -> None:  # noqa: ANN001
    seeder.owner("dev-1", "u1", "owner@example.com")
    seeder.sensor("fridge", value=45, last_seen_at=T0, min_limit=32, max_limit=40)

    caplog.set_level(logging.ERROR)
    report = _build(db_path, _FailingTransport()).run_once(now=T0)
    assert report.notify_failures == 1
    assert "notify failed" in caplog.text

    conn = sqlite3.connect(db_path)
    try:
        failures = conn.execute("SELECT COUNT(*) FROM notify_failures").fetchone()
        sent = conn.execute("SELECT COUNT(*) FROM sensor_alert_log").fetchone()
    finally:
        conn.close()

    assert failures[0] == 1
    assert sent[0] == 0


def test_invalid_row_only_skips_that_sensor(db_path, seeder) -> None:  # noqa: ANN001
    seeder.owner("dev-1", "u1", "owner@example.com")
    seeder.sensor("broken", value=45, last_seen_at=T0, min_limit="low", max_limit=40)
    seeder.sensor("fridge", value=45, last_seen_at=T0, min_limit=32, max_limit=40)

    transport = _RecordingTransport()
    report = _build(db_path, transport).run_once(now=T0)

    assert report.sensor_errors == 1
    assert report.notify_successes == 1
    by_id = {r.sensor_id: r for r in report.sensors}
    assert by_id["broken"].error is not None
    assert "InvalidSensorDataError" in by_id["broken"].error


class _ReadingArrivesAfterLoad(SqliteSensorStore):
    """
    在 Dispatcher 读取快照之后、写回状态之前，模拟采集链路写入一条新读数。
    """

    def load_sensor(self, sensor_id: str) -> SensorState:
        state = super().load_sensor(sensor_id)
        apply_reading(
            SqliteSensorStore(self.sqlite_path),
            OfflineDetector(clock=lambda: T0),
            SensorReading(sensor_id=sensor_id, value=36.0, timestamp=T0),
            now=T0,
        )
        return state


def test_fresh_reading_is_not_overwritten_by_stale_snapshot(db_path, seeder) -> None:  # noqa: ANN001
    seeder.owner("dev-1", "u1", "owner@example.com")
    seeder.sensor("attic", value=36, last_seen_at=T0 - timedelta(minutes=40), min_limit=32, max_limit=40, status="ok")

    transport = _RecordingTransport()
    dispatcher = Dispatcher(
        store=_ReadingArrivesAfterLoad(db_path),
        ledger=SqliteNotificationLedger(db_path),
        resolver=SqliteAccessResolver(db_path),
        transport=transport,
        notify_offline=True,
    )

    report = dispatcher.run_once(now=T0)

    assert report.sensors[0].skipped_reason == "superseded"
    assert report.status_changes == 0
    assert transport.sent == []
    state = SqliteSensorStore(db_path).load_sensor("attic")
    assert state.last_seen_at == T0
    assert state.status is Status.OK
