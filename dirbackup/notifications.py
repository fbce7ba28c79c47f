"""
Delivery of finished run reports.

Supports:
- EmailNotifier: HTML + plain-text email over SMTP
- WebhookNotifier: JSON POST of the report

Delivery is a separate step that consumes a finalized RunReport. A failed
delivery is logged and reported to the caller but never changes the
outcome of the backup run itself.
"""

import logging
import smtplib
from email.message import EmailMessage
from typing import List, Optional, Tuple

import httpx
from jinja2 import Environment, PackageLoader, select_autoescape

from dirbackup.backup.report import format_bytes, render_summary
from dirbackup.models import RunReport

logger = logging.getLogger(__name__)

TEMPLATE_NAME = 'backup_notification.html'
TIMESTAMP_FORMAT = '%d-%m-%Y %H:%M:%S'

_jinja_env = Environment(
    loader=PackageLoader('dirbackup', 'templates'),
    autoescape=select_autoescape(['html'])
)


class NotificationError(Exception):
    """Raised when a report cannot be delivered."""
    pass


def render_email(report: RunReport, app_name: str = 'dirbackup') -> Tuple[str, str, str]:
    """
    Render the notification email for a report.

    Args:
        report: Finalized RunReport
        app_name: Name shown in the email footer

    Returns:
        Tuple of (subject, html_body, text_body)
    """
    status_emoji = '⚠️' if report.has_failures else '✓'
    subject = f"{status_emoji} Directory Backup {report.status.capitalize()}"

    template = _jinja_env.get_template(TEMPLATE_NAME)
    html = template.render(
        report=report,
        total_size=format_bytes(report.total_bytes),
        timestamp=report.finalized_at.strftime(TIMESTAMP_FORMAT),
        app_name=app_name
    )

    return subject, html, render_summary(report)


class EmailNotifier:
    """
    Sends the run report by email through an SMTP server.
    """

    def __init__(
        self,
        recipient: str,
        sender: str,
        host: str = 'localhost',
        port: int = 25,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = False,
        app_name: str = 'dirbackup',
        timeout: int = 30
    ):
        self.recipient = recipient
        self.sender = sender
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.app_name = app_name
        self.timeout = timeout

    def __repr__(self):
        return f'<EmailNotifier to={self.recipient} via={self.host}:{self.port}>'

    def build_message(self, report: RunReport) -> EmailMessage:
        subject, html, text = render_email(report, self.app_name)

        message = EmailMessage()
        message['Subject'] = subject
        message['From'] = self.sender
        message['To'] = self.recipient
        message.set_content(text)
        message.add_alternative(html, subtype='html')
        return message

    def send(self, report: RunReport):
        """
        Send the report email.

        Raises:
            NotificationError: If the SMTP exchange fails
        """
        message = self.build_message(report)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Email failed to send: {e}")

        logger.info(f"Backup email notification sent to {self.recipient} (status: {report.status})")


class WebhookNotifier:
    """
    Posts the run report as JSON to a webhook URL.
    """

    def __init__(self, url: str, timeout: int = 30):
        self.url = url
        self.timeout = timeout

    def __repr__(self):
        return f'<WebhookNotifier url={self.url}>'

    def send(self, report: RunReport):
        """
        POST the report.

        Raises:
            NotificationError: If the request fails or the endpoint answers >= 400
        """
        try:
            response = httpx.post(self.url, json=report.to_dict(), timeout=self.timeout)
        except httpx.HTTPError as e:
            raise NotificationError(f"Webhook request failed: {e}")

        if response.status_code >= 400:
            raise NotificationError(f"Webhook returned HTTP {response.status_code}")

        logger.info(f"Backup webhook notification delivered to {self.url}")


def build_notifiers(config) -> List:
    """
    Create the notifiers enabled in config.

    Args:
        config: Config class or object

    Returns:
        List of notifier instances, possibly empty
    """
    notifiers = []

    if config.BACKUP_NOTIFICATION_EMAIL:
        notifiers.append(EmailNotifier(
            recipient=config.BACKUP_NOTIFICATION_EMAIL,
            sender=config.MAIL_FROM,
            host=config.MAIL_HOST,
            port=config.MAIL_PORT,
            username=config.MAIL_USERNAME,
            password=config.MAIL_PASSWORD,
            use_tls=config.MAIL_USE_TLS,
            app_name=config.APP_NAME
        ))

    if config.BACKUP_WEBHOOK_URL:
        notifiers.append(WebhookNotifier(config.BACKUP_WEBHOOK_URL, timeout=config.WEBHOOK_TIMEOUT))

    return notifiers


def deliver_report(report: RunReport, notifiers: List) -> bool:
    """
    Hand a finalized report to every notifier.

    Each notifier is attempted even if an earlier one failed.

    Args:
        report: Finalized RunReport
        notifiers: Objects exposing send(report)

    Returns:
        True if every notifier succeeded, False otherwise
    """
    delivered = True

    for notifier in notifiers:
        try:
            notifier.send(report)
        except NotificationError as e:
            delivered = False
            logger.error(f"Backup notification failed ({notifier!r}): {e}")
        except Exception as e:
            delivered = False
            logger.exception(f"Unexpected error delivering backup notification ({notifier!r}): {e}")

    return delivered
