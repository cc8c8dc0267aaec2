import logging
import smtplib
from email.message import EmailMessage

logger = logging.getLogger(__name__)


class Notifier:
    """Delivers one-time password codes to users."""

    def send_otp(self, email: str, code: str):
        raise NotImplementedError


class LogNotifier(Notifier):
    """Used when no SMTP server is configured. Codes only appear at DEBUG."""

    def send_otp(self, email, code):
        logger.info("OTP issued for %s (no mail server configured)", email)
        logger.debug("OTP for %s is %s", email, code)


class SmtpNotifier(Notifier):
    def __init__(self, host, port=587, user=None, password=None, sender=None, timeout=10):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user or "noreply@localhost"
        self.timeout = timeout

    def send_otp(self, email, code):
        msg = EmailMessage()
        msg["Subject"] = "Your OTP code for password change"
        msg["From"] = f"LBS Administrator <{self.sender}>"
        msg["To"] = email
        msg.set_content(f"Your OTP code is {code}")

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.starttls()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(msg)
        logger.info("OTP mail sent to %s", email)


def notifier_from_settings(settings) -> Notifier:
    if settings.smtp_host:
        return SmtpNotifier(
            settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.smtp_from,
        )
    return LogNotifier()
