"""
Order emails.

Delivery is best effort: without SMTP settings messages are only logged,
and send failures are logged and never reach the caller.
"""
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from fastapi import Request

from config import Settings

logger = logging.getLogger(__name__)


class Notifier:
    """
    Sends through a fresh SMTP connection per message, so it is safe to
    share between requests served from the threadpool.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def configured(self) -> bool:
        s = self.settings
        return bool(s.smtp_host and s.smtp_user and s.smtp_password)

    def _connect(self) -> smtplib.SMTP:
        s = self.settings
        if s.smtp_port == 465:
            return smtplib.SMTP_SSL(s.smtp_host, s.smtp_port, timeout=10)
        return smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=10)

    def _deliver(self, message: EmailMessage) -> None:
        s = self.settings
        with self._connect() as smtp:
            if s.smtp_port != 465:
                smtp.starttls()
            smtp.login(s.smtp_user, s.smtp_password)
            smtp.send_message(message)

    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> bool:
        if not self.configured:
            logger.info("SMTP not configured, email to %s not sent: %s", to, subject)
            return False

        message = EmailMessage()
        message["From"] = f'"{self.settings.app_name}" <{self.settings.smtp_user}>'
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text)
        if html:
            message.add_alternative(html, subtype="html")

        try:
            self._deliver(message)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send email to %s", to)
            return False
        logger.info("Email sent to %s: %s", to, subject)
        return True

    # Messages

    def order_confirmation(self, to: str, name: str, order: dict) -> bool:
        app = self.settings.app_name
        order_id = str(order["_id"])
        lines = "\n".join(
            f"- {item['name']} x{item['quantity']}: ${item['price_at_addition'] * item['quantity']:.2f}"
            for item in order["items"]
        )
        text = (
            f"Hola {name},\n\n"
            f"Recibimos tu pedido {order_id}.\n\n{lines}\n\n"
            f"Total: ${order['total_amount']:.2f} {order.get('currency', 'MXN')}\n\n"
            f"Puedes consultar su estado en {self.settings.app_url}/orders/{order_id}\n\n"
            f"Saludos,\nEl equipo de {app}"
        )
        return self.send(to, f"Confirmación de tu pedido {order_id}", text)

    def order_cancelled(self, to: str, name: str, order: dict) -> bool:
        order_id = str(order["_id"])
        text = (
            f"Hola {name},\n\n"
            f"Tu pedido {order_id} fue cancelado y el reembolso de "
            f"${order['total_amount']:.2f} está en proceso.\n\n"
            f"Saludos,\nEl equipo de {self.settings.app_name}"
        )
        return self.send(to, f"Tu pedido {order_id} fue cancelado", text)


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier
