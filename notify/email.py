"""
notify/email.py -- EmailNotifier: best-effort transactional email over SMTP.

Used by the registration flow (welcome) and the password reset flow (reset
link). Delivery is never part of the primary operation:

  - SMTP_HOST unset -> the message is logged (recipient redacted, reset link
    omitted) instead of sent. This is the dev-mode default.
  - Any SMTP/network/TLS failure is logged and swallowed; send_* returns False.

Security: recipient addresses are redacted in every log line, and reset
tokens never reach the log.

Layer rule: notify/ imports only stdlib. It does not import from api/,
auth/, or analytics/.
"""

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional

logger = logging.getLogger("gatehouse.notify")


def redact_email(email: str) -> str:
    """Redact an address for logs: 'alice@example.com' -> 'al***@example.com'."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailNotifier:
    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        frontend_url: str = "http://localhost:3000",
        timeout: float = 30,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.frontend_url = frontend_url.rstrip("/")
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def reset_link(self, token: str) -> str:
        return f"{self.frontend_url}/reset-password?token={token}"

    def send_welcome(self, to_email: str, username: str) -> bool:
        body = (
            f"Hi {username},\n\n"
            "Your Gatehouse account has been created. You can now sign in.\n\n"
            f"{self.frontend_url}/login\n"
        )
        return self._send(to_email, "Welcome to Gatehouse", body)

    def send_password_reset(self, to_email: str, token: str) -> bool:
        body = (
            "We received a request to reset your password. Open the link below "
            "to choose a new one:\n\n"
            f"{self.reset_link(token)}\n\n"
            "This link expires in 1 hour. If you did not request this, you can "
            "ignore this email.\n"
        )
        return self._send(to_email, "Reset your Gatehouse password", body, sensitive=True)

    def _send(self, to_email: str, subject: str, body: str, sensitive: bool = False) -> bool:
        """Deliver one plain-text message. Returns True on success, False on any failure."""
        if not self.is_configured:
            # Dev mode: log instead of sending. Never log a body carrying a token.
            logger.info(
                "Email not sent (SMTP not configured): to=%s subject=%r%s",
                redact_email(to_email),
                subject,
                "" if sensitive else f" body={body[:200]!r}",
            )
            return True

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email
        msg.set_content(body)

        try:
            context = ssl.create_default_context()
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=self.timeout) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.send_message(msg)
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.warning(
                "Email delivery failed: to=%s subject=%r error=%s",
                redact_email(to_email),
                subject,
                type(exc).__name__,
            )
            return False

        logger.info("Email sent: to=%s subject=%r", redact_email(to_email), subject)
        return True
