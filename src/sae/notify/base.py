from __future__ import annotations

from typing import Protocol


class EmailTransport(Protocol):
    """
    邮件传输接口（外部协作者）。

    约定：
    - send 失败抛异常，由 Dispatcher 统一捕获：不写通知记录，下个周期重试
    - recipients 为空视为调用方错误
    """

    def send(self, recipients: list[str], subject: str, body: str) -> None: ...
