"""Transactional email over SMTP."""
import logging
import smtplib
from email.message import EmailMessage

from .config import settings

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(self, host: str, port: int, username: str | None, password: str | None, sender: str):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender

    def send(self, to: str, subject: str, text: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text)

        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)
        logger.info("Sent '%s' to %s", subject, to)


class Email:
    """Messages sent to one user, each pointing at ``url``."""

    def __init__(self, mailer: Mailer, user, url: str):
        self.mailer = mailer
        self.to = user.email
        self.first_name = user.name.split(" ")[0]
        self.url = url

    def send(self, subject: str, text: str) -> None:
        self.mailer.send(self.to, subject, text)

    def send_welcome(self) -> None:
        self.send(
            "Welcome to the Tour Booking family!",
            f"Hi {self.first_name},\n\nWelcome aboard! Complete your profile here: {self.url}\n",
        )

    def send_password_reset(self) -> None:
        self.send(
            "Your password reset code (valid for only 10 minutes)",
            f"Hi {self.first_name},\n\n"
            f"Forgot your password? Submit a PATCH request with your new password and "
            f"passwordConfirm to: {self.url}\n"
            "If you didn't forget your password, please ignore this email.\n",
        )


def get_mailer() -> Mailer:
    return Mailer(
        host=settings.email_host,
        port=settings.email_port,
        username=settings.email_username,
        password=settings.email_password,
        sender=settings.email_from,
    )
