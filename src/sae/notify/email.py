from __future__ import annotations

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr

from ..errors import DispatchError
from .base import EmailTransport


@dataclass(slots=True)
class SmtpEmailTransport(EmailTransport):
    """
    SMTP 邮件传输：465 端口走隐式 TLS（SMTP_SSL），其余端口按 use_tls 决定是否 STARTTLS。

    一封邮件发给全部收件人；任何 SMTP/网络错误统一包装为 DispatchError。
    """

    smtp_host: str
    smtp_port: int
    username: str
    password: str
    from_addr: str = ""
    from_name: str = "Sensor Alerts"
    use_tls: bool = True
    timeout_seconds: float = 20.0

    def send(self, recipients: list[str], subject: str, body: str) -> None:
        if not recipients:
            raise DispatchError("SmtpEmailTransport.send: recipients is empty")

        sender = self.from_addr or self.username
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = formataddr((self.from_name, sender)) if self.from_name else sender
        msg["To"] = ", ".join(recipients)
        msg.set_content(body)

        try:
            if self.smtp_port == 465:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, timeout=self.timeout_seconds) as client:
                    self._deliver(client, msg)
            else:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout_seconds) as client:
                    if self.use_tls:
                        client.starttls()
                    self._deliver(client, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DispatchError(f"smtp send failed: {type(e).__name__}: {e}") from e

    def _deliver(self, client: smtplib.SMTP, msg: EmailMessage) -> None:
        if self.username:
            client.login(self.username, self.password)
        client.send_message(msg)
