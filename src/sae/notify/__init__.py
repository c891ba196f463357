from .base import EmailTransport
from .email import SmtpEmailTransport
from .formatter import AlertMessage, format_alert_message

__all__ = [
    "AlertMessage",
    "EmailTransport",
    "SmtpEmailTransport",
    "format_alert_message",
]
