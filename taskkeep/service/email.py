from __future__ import annotations

import html
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from taskkeep.logging import get_logger

logger = get_logger(__name__)


class EmailService:
    """Transactional mail for account lifecycle events.

    Supports:
    - SMTP with STARTTLS or implicit TLS
    - Welcome emails on registration
    - Cancellation emails on account deletion
    - Fallback to logging when not configured (dev mode)

    Sending never raises; callers get a bool and the failure is logged.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Taskkeep",
        base_url: Optional[str] = None,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = base_url or "http://localhost:8000"

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _redact_email(self, email: str) -> str:
        """Redact an email address for logging to avoid PII leakage."""
        if "@" not in email:
            return "redacted"
        local, domain = email.split("@", 1)
        return f"{local[:2]}***@{domain}"

    def _deliver(self, to_email: str, msg: MIMEMultipart) -> None:
        context = ssl.create_default_context()
        if self.smtp_use_tls:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                server.starttls(context=context)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())
        else:
            with smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=30
            ) as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())

    def _send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        """Send an email via SMTP.

        Returns True if sent (or logged in dev mode), False otherwise.
        """
        if not self.is_configured:
            logger.info(
                "email_dev_mode",
                to=self._redact_email(to_email),
                subject=subject,
                body_preview=text_body[:200] if text_body else html_body[:200],
            )
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        if text_body:
            msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        try:
            self._deliver(to_email, msg)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                error=str(e),
                error_code=getattr(e, "smtp_code", None),
            )
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(
                "email_recipient_refused",
                to=self._redact_email(to_email),
                error=str(e),
            )
            return False
        except smtplib.SMTPException as e:
            logger.error(
                "email_smtp_error",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        except (ssl.SSLError, OSError) as e:
            logger.error(
                "email_connect_failed",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

        logger.info("email_sent", to=self._redact_email(to_email), subject=subject)
        return True

    def send_welcome(self, to_email: str, name: str) -> bool:
        subject = "Thanks for joining in!"
        safe_name = html.escape(name)
        html_body = f"""
<!DOCTYPE html>
<html>
<body>
    <h1>Welcome to Taskkeep, {safe_name}.</h1>
    <p>Let us know how you get along with the app.</p>
    <p><a href="{self.base_url}">{self.base_url}</a></p>
</body>
</html>
"""
        text_body = f"""Welcome to Taskkeep, {name}.

Let us know how you get along with the app.

{self.base_url}
"""
        return self._send_email(to_email, subject, html_body, text_body)

    def send_cancellation(self, to_email: str, name: str) -> bool:
        subject = "Sorry to see you go!"
        safe_name = html.escape(name)
        html_body = f"""
<!DOCTYPE html>
<html>
<body>
    <h1>Goodbye, {safe_name}.</h1>
    <p>Your account and all of your tasks have been deleted.</p>
    <p>Is there anything we could have done to keep you on board?</p>
</body>
</html>
"""
        text_body = f"""Goodbye, {name}.

Your account and all of your tasks have been deleted.
Is there anything we could have done to keep you on board?
"""
        return self._send_email(to_email, subject, html_body, text_body)


__all__ = ["EmailService"]
