from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime

from .access.resolver import AccessResolver, resolve_recipients
from .access.sqlite_resolver import SqliteAccessResolver
from .config import AppConfig
from .errors import LedgerConflictError, StoreError
from .health.offline import OfflineDetector
from .models import CATEGORY_OFFLINE, CATEGORY_VALUE, SensorState, Status, utc_now
from .notify.base import EmailTransport
from .notify.email import SmtpEmailTransport
from .notify.formatter import format_alert_message
from .state.sqlite_ledger import SqliteNotificationLedger
from .state.sqlite_store import SqliteSensorStore
from .state.store import NotificationLedger, SensorStateStore


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SensorRunReport:
    sensor_id: str
    previous_status: Status | None = None
    status: Status | None = None
    status_changed: bool = False
    category: str | None = None
    notify_attempted: bool = False
    notified: bool = False
    recipients: int = 0
    skipped_reason: str | None = None
    error: str | None = None
    duration_ms: int = 0


@dataclass(slots=True)
class DispatchRunReport:
    started_at: datetime
    finished_at: datetime
    evaluated_at: datetime
    duration_ms: int
    sensors: tuple[SensorRunReport, ...]
    sensors_evaluated: int
    status_changes: int
    alerts_active: int
    notify_attempts: int
    notify_successes: int
    notify_failures: int
    recipients_notified: int
    suppressed_cooldown: int
    deferred: int
    sensor_errors: int

    def to_json_dict(self) -> dict[str, object]:
        return {
            "sent": self.recipients_notified,
            "notified_sensors": self.notify_successes,
            "evaluated": self.sensors_evaluated,
            "status_changes": self.status_changes,
            "notify_failures": self.notify_failures,
            "deferred": self.deferred,
            "errors": self.sensor_errors,
            "duration_ms": self.duration_ms,
        }


@dataclass(slots=True)
class Dispatcher:
    """
    核心调度器：一次调度周期内的完整闭环：
    SensorState -> Evaluate -> State(status) -> Ledger(cooldown) -> Recipients -> Email -> Ledger(record)

    - 传感器之间互相独立，用有界线程池并行处理，不保证顺序
    - 单个传感器的任何失败只记录日志，不影响本轮其它传感器
    - 只有无法枚举传感器（整库不可达）才会中止本轮（FatalStoreError 向上抛出）
    """

    store: SensorStateStore
    ledger: NotificationLedger
    resolver: AccessResolver
    transport: EmailTransport | None
    detector: OfflineDetector = field(default_factory=OfflineDetector)
    max_workers: int = 4
    run_deadline_seconds: float | None = None
    notify_offline: bool = False
    require_email_alert: bool = True

    def run_once(self, now: datetime | None = None) -> DispatchRunReport:
        """
        执行一个调度周期（单次）。

        截止时间到达后，尚未开始处理的传感器标记为 deferred，下一轮自然会再处理；
        部分完成是预期行为，不视为失败。
        """
        started_at = utc_now()
        now = now or self.detector.now()
        start_t = time.monotonic()
        deadline_at = start_t + self.run_deadline_seconds if self.run_deadline_seconds is not None else None

        sensor_ids = self.store.list_sensor_ids()

        reports: list[SensorRunReport] = []
        if sensor_ids:
            workers = max(1, min(self.max_workers, len(sensor_ids)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sae-dispatch") as pool:
                futures = [pool.submit(self._process_sensor, sid, now, deadline_at) for sid in sensor_ids]
                reports = [f.result() for f in futures]

        duration_ms = int((time.monotonic() - start_t) * 1000)
        return DispatchRunReport(
            started_at=started_at,
            finished_at=utc_now(),
            evaluated_at=now,
            duration_ms=duration_ms,
            sensors=tuple(reports),
            sensors_evaluated=sum(1 for r in reports if r.status is not None),
            status_changes=sum(1 for r in reports if r.status_changed),
            alerts_active=sum(1 for r in reports if r.status == Status.ALERT),
            notify_attempts=sum(1 for r in reports if r.notify_attempted),
            notify_successes=sum(1 for r in reports if r.notified),
            notify_failures=sum(1 for r in reports if r.notify_attempted and not r.notified),
            recipients_notified=sum(r.recipients for r in reports if r.notified),
            suppressed_cooldown=sum(1 for r in reports if r.skipped_reason in ("cooldown", "conflict")),
            deferred=sum(1 for r in reports if r.skipped_reason == "deferred"),
            sensor_errors=sum(1 for r in reports if r.error is not None and not r.notify_attempted),
        )

    def _process_sensor(self, sensor_id: str, now: datetime, deadline_at: float | None) -> SensorRunReport:
        start_t = time.monotonic()
        report = SensorRunReport(sensor_id=sensor_id)
        if deadline_at is not None and start_t >= deadline_at:
            report.skipped_reason = "deferred"
            return report

        try:
            self._evaluate_and_notify(report, now)
        except StoreError as e:
            report.error = f"{type(e).__name__}: {e}"
            logger.exception("sensor skipped: sensor_id=%s error=%s", sensor_id, type(e).__name__)
        except Exception as e:  # noqa: BLE001
            report.error = f"{type(e).__name__}: {e}"
            logger.exception("sensor processing crashed: sensor_id=%s", sensor_id)

        report.duration_ms = int((time.monotonic() - start_t) * 1000)
        return report

    def _evaluate_and_notify(self, report: SensorRunReport, now: datetime) -> None:
        state = self.store.load_sensor(report.sensor_id)
        status = self.detector.classify(state, now)
        report.previous_status = state.status
        report.status = status

        stint_start = state.status_updated_at or now
        if status != state.status:
            if not self.store.write_status(state.sensor_id, status, now, observed=state):
                # 快照已被新读数或并发写入方更新，交给下一轮按最新数据处理
                report.skipped_reason = "superseded"
                logger.info(
                    "status write superseded: sensor_id=%s computed=%s",
                    state.sensor_id,
                    status.value,
                )
                return
            report.status_changed = True
            stint_start = now
            logger.info(
                "status changed: sensor_id=%s from=%s to=%s value=%s",
                state.sensor_id,
                state.status.value,
                status.value,
                state.latest_value,
            )

        category = self._notify_category(status)
        if category is None:
            return
        report.category = category
        if self.require_email_alert and not state.email_alert:
            report.skipped_reason = "email_alert_disabled"
            return

        self._notify(report, state, status, category, now, stint_start)

    def _notify_category(self, status: Status) -> str | None:
        if status == Status.ALERT:
            return CATEGORY_VALUE
        if status == Status.OFFLINE and self.notify_offline:
            return CATEGORY_OFFLINE
        return None

    def _notify(
        self,
        report: SensorRunReport,
        state: SensorState,
        status: Status,
        category: str,
        now: datetime,
        stint_start: datetime,
    ) -> None:
        sensor_id = state.sensor_id
        if not self.ledger.should_notify(sensor_id, category, now):
            report.skipped_reason = "cooldown"
            return

        recipients = resolve_recipients(self.resolver, sensor_id)
        if not recipients:
            report.skipped_reason = "no_recipients"
            logger.info("no recipients: sensor_id=%s category=%s", sensor_id, category)
            return

        if self.transport is None:
            report.skipped_reason = "no_transport"
            logger.warning("no email transport configured: sensor_id=%s category=%s", sensor_id, category)
            return

        try:
            claim_id = self.ledger.claim(sensor_id, category, status, now, stint_start)
        except LedgerConflictError:
            report.skipped_reason = "conflict"
            logger.info("notification window taken by concurrent run: sensor_id=%s category=%s", sensor_id, category)
            return

        message = format_alert_message(state, status, now)
        report.notify_attempted = True
        try:
            self.transport.send(list(recipients), message.subject, message.body)
        except Exception as e:  # noqa: BLE001
            report.error = f"{type(e).__name__}: {e}"
            logger.exception(
                "notify failed: sensor_id=%s category=%s recipients=%d transport=%s",
                sensor_id,
                category,
                len(recipients),
                type(self.transport).__name__,
            )
            self._release_after_failure(claim_id, sensor_id, category, report.error, now)
            return

        report.notified = True
        report.recipients = len(recipients)
        try:
            self.ledger.confirm(claim_id)
        except StoreError:
            # pending 占位仍在，冷却期内不会重复发送
            logger.exception("notification sent but confirm failed: sensor_id=%s claim_id=%d", sensor_id, claim_id)
        logger.info(
            "notification sent: sensor_id=%s category=%s status=%s recipients=%d",
            sensor_id,
            category,
            status.value,
            len(recipients),
        )

    def _release_after_failure(self, claim_id: int, sensor_id: str, category: str, error: str, now: datetime) -> None:
        try:
            self.ledger.release(claim_id)
        except StoreError:
            logger.exception("claim release failed: sensor_id=%s claim_id=%d", sensor_id, claim_id)
        try:
            self.ledger.record_failure(sensor_id, category, error, now)
        except StoreError:
            logger.exception("notify failure not recorded: sensor_id=%s", sensor_id)


def build_dispatcher(config: AppConfig) -> Dispatcher:
    """
    根据配置构建 Dispatcher。

    所有存储在这里显式构造并注入，Dispatcher 内只关注流程编排；
    SMTP 账号/密码只通过环境变量读取，避免落盘。
    """
    store = SqliteSensorStore(config.sqlite_path)
    ledger = SqliteNotificationLedger(config.sqlite_path, cooldown=config.cooldown)
    store.ensure_schema()

    transport: EmailTransport | None = None
    if config.email and config.email.smtp_host:
        transport = SmtpEmailTransport(
            smtp_host=config.email.smtp_host,
            smtp_port=config.email.smtp_port,
            username=config.resolve_env(config.email.user_env) or "",
            password=config.resolve_env(config.email.password_env) or "",
            from_addr=config.email.from_addr,
            from_name=config.email.from_name,
            use_tls=config.email.use_tls,
        )

    return Dispatcher(
        store=store,
        ledger=ledger,
        resolver=SqliteAccessResolver(config.sqlite_path),
        transport=transport,
        detector=OfflineDetector(offline_after=config.offline_after),
        max_workers=config.max_workers,
        run_deadline_seconds=config.run_deadline_seconds,
        notify_offline=config.notify_offline,
        require_email_alert=config.require_email_alert,
    )
