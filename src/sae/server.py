from __future__ import annotations

import hmac
import json
import logging
import urllib.parse
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from .dispatcher import Dispatcher
from .errors import FatalStoreError


logger = logging.getLogger(__name__)

NOTIFY_PATH = "/api/alerts/notify"
SWEEP_PATH = "/api/sensors/offline-sweep"


class _TriggerHandler(BaseHTTPRequestHandler):
    """
    调度触发端点（供 cron/外部调度器调用）：
    - POST /api/alerts/notify：执行一轮 Dispatcher
    - POST /api/sensors/offline-sweep：执行一次离线 sweep
    - 请求头 x-alerts-secret 必须与配置的密钥一致；请求体可为空
    """

    dispatcher: Dispatcher
    secret: str | None

    def do_POST(self) -> None:  # noqa: N802
        path = urllib.parse.urlparse(self.path).path
        try:
            content_len = int(self.headers.get("Content-Length") or "0")
        except ValueError:
            self._send_json(400, {"error": "Bad request"})
            return
        if content_len > 0:
            self.rfile.read(content_len)

        if path not in (NOTIFY_PATH, SWEEP_PATH):
            self._send_json(404, {"error": "Not found"})
            return
        if not self._authorized():
            self._send_json(401, {"error": "Unauthorized"})
            return

        try:
            if path == NOTIFY_PATH:
                report = self.dispatcher.run_once()
                payload: dict[str, object] = report.to_json_dict()
            else:
                sweep = self.dispatcher.detector.sweep(self.dispatcher.store)
                payload = {
                    "checked": sweep.sensors_checked,
                    "offline": list(sweep.transitioned),
                    "errors": sweep.errors,
                }
        except FatalStoreError:
            logger.exception("trigger run aborted: path=%s", path)
            self._send_json(500, {"error": "Internal server error"})
            return

        self._send_json(200, payload)

    def _authorized(self) -> bool:
        if not self.secret:
            return False
        provided = self.headers.get("x-alerts-secret") or ""
        return hmac.compare_digest(provided.encode("utf-8"), self.secret.encode("utf-8"))

    def _send_json(self, status: int, payload: dict[str, object]) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args) -> None:  # noqa: A002, ANN001
        logger.debug("http %s " + format, self.address_string(), *args)


def make_server(dispatcher: Dispatcher, *, host: str, port: int, secret: str | None) -> ThreadingHTTPServer:
    if not secret:
        logger.warning("trigger secret is not configured; every request will be rejected")
    handler = type("TriggerHandler", (_TriggerHandler,), {"dispatcher": dispatcher, "secret": secret})
    return ThreadingHTTPServer((host, port), handler)
