"""
SMTP mail delivery for operator alerts
"""
import logging
import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import List, Optional

from core.config import settings

logger = logging.getLogger(__name__)


class EmailService:

    def __init__(self):
        self.smtp_server = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_username = settings.SMTP_USER
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.SMTP_FROM or settings.SMTP_USER

    def send_email(
        self,
        to_emails: List[str],
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """Send an email; returns False (and logs) instead of raising"""
        if not self.smtp_server:
            logger.warning(f"SMTP not configured, dropping mail '{subject}' to {to_emails}")
            return False

        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = self.from_email or ''
            msg['To'] = ', '.join(to_emails)

            if text_content is None:
                text_content = re.sub(r'<[^>]+>', '', html_content)
            msg.attach(MIMEText(text_content, 'plain'))
            msg.attach(MIMEText(html_content, 'html'))

            with smtplib.SMTP(self.smtp_server, self.smtp_port) as server:
                server.starttls()
                if self.smtp_username:
                    server.login(self.smtp_username, self.smtp_password or '')
                server.send_message(msg)

            logger.info(f"Email sent successfully to {to_emails}")
            return True

        except Exception as e:
            logger.error(f"Failed to send email to {to_emails}: {e}")
            return False


def send_sync_alert(error_message: str, mailer: Optional[EmailService] = None) -> bool:
    """Alert the inventory board that the EasyVerein sync could not fetch items"""
    recipient = settings.INVENTORY_BOARD_EMAIL
    if not recipient:
        logger.error(f"❌ Sync alert not sent, INVENTORY_BOARD_EMAIL is not set: {error_message}")
        return False

    html = (
        "<h2>EasyVerein Sync Failed</h2>"
        "<p>The scheduled inventory synchronisation could not fetch items from EasyVerein.</p>"
        f"<p><strong>Error:</strong> {escape(error_message)}</p>"
        "<p>No local inventory rows were changed. Please check the API token and connectivity.</p>"
    )
    return (mailer or EmailService()).send_email([recipient], "CRITICAL: EasyVerein Sync Failed", html)
