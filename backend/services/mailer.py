"""
Best-effort email delivery.

SMTP is used when fully configured; SendGrid's REST API is the fallback when
SMTP is absent or fails.
"""

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import httpx

from backend.core import config

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"
SMTP_TIMEOUT_SECONDS = 30


class MailerNotConfiguredError(RuntimeError):
    pass


class Mailer:
    def __init__(
        self,
        smtp_host: str | None = None,
        smtp_port: int | None = None,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        sendgrid_api_key: str | None = None,
        from_email: str = "no-reply@example.com",
        http_client: httpx.Client | None = None,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.sendgrid_api_key = sendgrid_api_key
        self.from_email = from_email
        self._http_client = http_client

    @classmethod
    def from_config(cls) -> "Mailer":
        return cls(
            smtp_host=config.SMTP_HOST,
            smtp_port=config.SMTP_PORT,
            smtp_user=config.SMTP_USER,
            smtp_password=config.SMTP_PASS,
            sendgrid_api_key=config.SENDGRID_API_KEY,
            from_email=config.FROM_EMAIL,
        )

    @property
    def smtp_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_port and self.smtp_user and self.smtp_password)

    @property
    def is_configured(self) -> bool:
        return self.smtp_enabled or bool(self.sendgrid_api_key)

    def send(self, to: str | list[str], subject: str, text: str = "", html: str = "", from_email: str | None = None) -> str:
        """Send one message and return the name of the backend that delivered it."""
        sender = from_email or self.from_email
        recipients = [to] if isinstance(to, str) else list(to)

        if self.smtp_enabled:
            try:
                self._send_smtp(sender, recipients, subject, text, html)
                return "smtp"
            except (smtplib.SMTPException, OSError):
                logger.exception("SMTP send failed for %s", ", ".join(recipients))

        if self.sendgrid_api_key:
            self._send_sendgrid(sender, recipients, subject, text, html)
            return "sendgrid"

        raise MailerNotConfiguredError("No mailer configured (missing SMTP and SendGrid config)")

    def close(self) -> None:
        if self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def _send_smtp(self, sender: str, recipients: list[str], subject: str, text: str, html: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = ", ".join(recipients)
        if text:
            msg.attach(MIMEText(text, "plain"))
        if html:
            msg.attach(MIMEText(html, "html"))

        context = ssl.create_default_context()
        if self.smtp_port == 465:
            server = smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=SMTP_TIMEOUT_SECONDS)
        else:
            server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=SMTP_TIMEOUT_SECONDS)

        try:
            if self.smtp_port != 465:
                server.starttls(context=context)
            server.login(self.smtp_user, self.smtp_password)
            server.sendmail(sender.split("<")[-1].rstrip(">"), recipients, msg.as_string())
        finally:
            server.quit()
        logger.info("Email sent via SMTP host %s", self.smtp_host)

    def _send_sendgrid(self, sender: str, recipients: list[str], subject: str, text: str, html: str) -> None:
        content = []
        if text:
            content.append({"type": "text/plain", "value": text})
        if html:
            content.append({"type": "text/html", "value": html})

        payload = {
            "personalizations": [{"to": [{"email": email}]} for email in recipients],
            "from": {"email": sender},
            "subject": subject,
            "content": content or [{"type": "text/plain", "value": ""}],
        }
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=SMTP_TIMEOUT_SECONDS)

        try:
            response = self._http_client.post(
                SENDGRID_SEND_URL,
                headers={"Authorization": f"Bearer {self.sendgrid_api_key}"},
                json=payload,
            )
            response.raise_for_status()
        except httpx.HTTPError:
            logger.exception("SendGrid send failed for %s", ", ".join(recipients))
            raise
        logger.info("Email sent via SendGrid to %s", ", ".join(recipients))
