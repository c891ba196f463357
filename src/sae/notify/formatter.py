from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..models import SensorState, Status


@dataclass(frozen=True, slots=True)
class AlertMessage:
    subject: str
    body: str


def format_reading(value: float | None, unit: str) -> str:
    if value is None:
        return "N/A"
    return f"{value:.1f}{unit}"


def format_alert_message(state: SensorState, status: Status, now: datetime) -> AlertMessage:
    """
    统一的纯文本告警邮件：传感器名、当前读数与单位、阈值与时间。
    """
    name = state.display_name
    current = format_reading(state.latest_value, state.unit)
    t = state.thresholds

    if status == Status.OFFLINE:
        subject = f"Offline: {name} stopped reporting"
        headline = f"Sensor {name} has not reported any data and is now offline."
    else:
        subject = f"Critical: {name} needs attention"
        headline = f"Sensor {name} is now in a critical state."

    lines = [
        headline,
        "",
        f"current reading: {current}",
        f"status: {status.value}",
        f"range: {format_reading(t.min_limit, state.unit)} .. {format_reading(t.max_limit, state.unit)}",
        f"last_seen_at: {state.last_seen_at.isoformat() if state.last_seen_at else '-'}",
        f"checked_at: {now.isoformat()}",
        "",
        "You can adjust thresholds in the Alerts page.",
    ]
    return AlertMessage(subject=subject, body="\n".join(lines))
