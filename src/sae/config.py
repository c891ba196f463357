from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping

from .errors import ConfigError


def _require_dict(value: Any, *, where: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"Expected object at {where}, got {type(value)}")
    return value


def _get_bool(d: Mapping[str, Any], key: str, default: bool) -> bool:
    v = d.get(key, default)
    return bool(v)


def _get_int(d: Mapping[str, Any], key: str, default: int) -> int:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _get_float(d: Mapping[str, Any], key: str, default: float) -> float:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


def _get_str(d: Mapping[str, Any], key: str, default: str | None = None) -> str | None:
    v = d.get(key, default)
    if v is None:
        return None
    return str(v)


@dataclass(frozen=True, slots=True)
class EmailNotifyConfig:
    """
    邮件通知配置（SMTP）。

    user_env / password_env:
      - SMTP 账号与密码所在的环境变量名（secret 不落盘）
    smtp_port:
      - 465 走隐式 TLS，其余端口按 use_tls 决定是否 STARTTLS
    """

    smtp_host: str
    smtp_port: int
    user_env: str
    password_env: str
    from_addr: str = ""
    from_name: str = "Sensor Alerts"
    use_tls: bool = True


@dataclass(frozen=True, slots=True)
class ServerConfig:
    """
    HTTP 触发端点配置。

    secret_env:
      - 共享密钥所在的环境变量名，请求需携带 x-alerts-secret 头
    """

    host: str = "127.0.0.1"
    port: int = 8080
    secret_env: str = "ALERTS_CRON_SECRET"


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    应用总配置。

    poll_interval_seconds:
      - daemon 模式下两次调度之间的间隔
    offline_threshold_seconds / cooldown_seconds:
      - 离线判定阈值与通知冷却期，默认均为 30 分钟
    max_workers:
      - 单轮内并行处理传感器的线程数上限
    run_deadline_seconds:
      - 单轮截止时间；到期后尚未开始的传感器留给下一轮。None 表示不限
    notify_offline:
      - 是否对 offline 状态发送通知（默认只对 alert 发送）
    require_email_alert:
      - 是否要求传感器本身开启 email_alert 才发送
    """

    poll_interval_seconds: int
    offline_threshold_seconds: int
    cooldown_seconds: int
    max_workers: int
    run_deadline_seconds: float | None
    notify_offline: bool
    require_email_alert: bool
    sqlite_path: str
    email: EmailNotifyConfig | None
    server: ServerConfig

    @property
    def offline_after(self) -> timedelta:
        return timedelta(seconds=self.offline_threshold_seconds)

    @property
    def cooldown(self) -> timedelta:
        return timedelta(seconds=self.cooldown_seconds)

    def resolve_env(self, env_name: str | None) -> str | None:
        if not env_name:
            return None
        return os.environ.get(env_name)


def load_config(config_path: str) -> AppConfig:
    """
    使用 JSON 作为配置落地形式。

    JSON 顶层结构（示意）：
    {
      "poll_interval_seconds": 60,
      "offline_threshold_seconds": 1800,
      "cooldown_seconds": 1800,
      "max_workers": 8,
      "run_deadline_seconds": 50,
      "notify_offline": false,
      "require_email_alert": true,
      "state": { "sqlite_path": "./sae_state.sqlite3" },
      "notify": { "email": { ... } },
      "server": { "host": "127.0.0.1", "port": 8080, "secret_env": "ALERTS_CRON_SECRET" }
    }
    """
    try:
        with open(config_path, "rb") as f:
            raw = json.loads(f.read().decode("utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e
    return parse_config(raw)


def parse_config(raw: Any) -> AppConfig:
    root = _require_dict(raw, where="$")

    poll_interval_seconds = max(1, _get_int(root, "poll_interval_seconds", 60))
    offline_threshold_seconds = _get_int(root, "offline_threshold_seconds", 30 * 60)
    cooldown_seconds = _get_int(root, "cooldown_seconds", 30 * 60)
    if offline_threshold_seconds <= 0:
        raise ConfigError("$.offline_threshold_seconds must be positive")
    if cooldown_seconds < 0:
        raise ConfigError("$.cooldown_seconds must not be negative")

    run_deadline: float | None = None
    if root.get("run_deadline_seconds") is not None:
        run_deadline = _get_float(root, "run_deadline_seconds", 0.0)
        if run_deadline <= 0:
            run_deadline = None

    state = _require_dict(root.get("state", {"sqlite_path": "./sae_state.sqlite3"}), where="$.state")
    sqlite_path = str(state.get("sqlite_path") or "./sae_state.sqlite3")

    notify = _require_dict(root.get("notify", {}), where="$.notify")

    email_cfg: EmailNotifyConfig | None = None
    if isinstance(notify.get("email"), dict):
        em = _require_dict(notify["email"], where="$.notify.email")
        email_cfg = EmailNotifyConfig(
            smtp_host=str(em.get("smtp_host") or ""),
            smtp_port=_get_int(em, "smtp_port", 587),
            user_env=str(em.get("user_env") or "SMTP_USER"),
            password_env=str(em.get("password_env") or "SMTP_PASS"),
            from_addr=str(em.get("from_addr") or ""),
            from_name=_get_str(em, "from_name", "Sensor Alerts") or "",
            use_tls=_get_bool(em, "use_tls", True),
        )

    srv = _require_dict(root.get("server", {}), where="$.server")
    server_cfg = ServerConfig(
        host=str(srv.get("host") or "127.0.0.1"),
        port=_get_int(srv, "port", 8080),
        secret_env=str(srv.get("secret_env") or "ALERTS_CRON_SECRET"),
    )

    return AppConfig(
        poll_interval_seconds=poll_interval_seconds,
        offline_threshold_seconds=offline_threshold_seconds,
        cooldown_seconds=cooldown_seconds,
        max_workers=max(1, _get_int(root, "max_workers", 4)),
        run_deadline_seconds=run_deadline,
        notify_offline=_get_bool(root, "notify_offline", False),
        require_email_alert=_get_bool(root, "require_email_alert", True),
        sqlite_path=sqlite_path,
        email=email_cfg,
        server=server_cfg,
    )
