"""Email sender service - delivers notifications via SMTP."""
import asyncio
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from ..exceptions import DeliveryError
from ..schemas.notification import EmailConfig

logger = logging.getLogger(__name__)


class EmailSenderService:
    """Sends multipart (plain text + HTML) emails.

    smtplib is blocking, so the SMTP conversation runs in a worker thread.
    """

    def __init__(self, timeout: float = 30):
        self.timeout = timeout

    def _build_message(self, config: EmailConfig, subject: str, text_body: str, html_body: Optional[str]) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = config.from_email
        msg["To"] = ", ".join(config.to_emails)
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        if html_body:
            msg.attach(MIMEText(html_body, "html", "utf-8"))
        return msg

    def _send_blocking(self, config: EmailConfig, msg: MIMEMultipart) -> None:
        context = ssl.create_default_context()
        implicit_tls = config.smtp_secure or config.smtp_port == 465

        if implicit_tls:
            server = smtplib.SMTP_SSL(config.smtp_host, config.smtp_port, timeout=self.timeout, context=context)
        else:
            server = smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=self.timeout)

        with server:
            if not implicit_tls and config.use_starttls:
                server.starttls(context=context)
            if config.smtp_user and config.smtp_pass:
                server.login(config.smtp_user, config.smtp_pass)
            server.sendmail(config.from_email, config.to_emails, msg.as_string())

    async def send_email(
        self,
        config: EmailConfig,
        subject: str,
        text_body: str,
        html_body: Optional[str] = None,
    ) -> None:
        """Send one email to every recipient in config.to_emails.

        Raises DeliveryError on any SMTP or connection failure.
        """
        if not config.to_emails:
            raise DeliveryError("Email channel has no recipients")

        msg = self._build_message(config, subject, text_body, html_body)
        logger.info(f"Sending email '{subject}' via {config.smtp_host}:{config.smtp_port} to {len(config.to_emails)} recipient(s)")

        try:
            await asyncio.to_thread(self._send_blocking, config, msg)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for user '{config.smtp_user}': {e}")
            raise DeliveryError(f"SMTP authentication failed: {e.smtp_code}") from e
        except smtplib.SMTPRecipientsRefused as e:
            raise DeliveryError(f"Recipients refused: {', '.join(e.recipients)}") from e
        except smtplib.SMTPException as e:
            raise DeliveryError(f"SMTP error: {type(e).__name__}: {e}") from e
        except OSError as e:
            raise DeliveryError(f"Cannot reach {config.smtp_host}:{config.smtp_port}: {e}") from e


# Global instance
email_sender_service = EmailSenderService()
