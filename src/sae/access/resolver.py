from __future__ import annotations

from typing import Protocol

from ..models import Recipient


class AccessResolver(Protocol):
    """
    访问关系查询（外部协作者，只读）：
    - get_owner：传感器所属设备的 owner
    - list_accepted_recipients：已接受邀请的协作者，alert_enabled 决定是否收通知
    """

    def get_owner(self, sensor_id: str) -> Recipient | None: ...

    def list_accepted_recipients(self, sensor_id: str) -> list[Recipient]: ...


def resolve_recipients(resolver: AccessResolver, sensor_id: str) -> tuple[str, ...]:
    """
    owner + 开启告警的协作者，按邮箱去重（大小写不敏感，保持首次出现顺序）。
    """
    candidates: list[str] = []
    owner = resolver.get_owner(sensor_id)
    if owner is not None and owner.email:
        candidates.append(owner.email)
    for r in resolver.list_accepted_recipients(sensor_id):
        if r.alert_enabled and r.email:
            candidates.append(r.email)

    seen: set[str] = set()
    emails: list[str] = []
    for email in candidates:
        e = email.strip()
        if not e or e.lower() in seen:
            continue
        seen.add(e.lower())
        emails.append(e)
    return tuple(emails)
