from dataclasses import dataclass
from pathlib import Path

import resend

from cohort_reports.config import get_settings
from cohort_reports.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Sender:
    """The no-reply identity reports are sent from."""

    user_id: int
    name: str
    email: str

    @property
    def from_header(self) -> str:
        return f"{self.name} <{self.email}>" if self.name else self.email


def write_attachment(name: str, content: str) -> Path:
    """Write CSV text to the attachment directory, keeping CRLF line ends."""
    directory = Path(get_settings().attachment_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(content, encoding="utf-8", newline="")
    return path


def _init_resend() -> None:
    """Initialize Resend API with API key."""
    settings = get_settings()
    if settings.resend_api_key:
        resend.api_key = settings.resend_api_key


async def send_report_email(
    recipient_email: str,
    recipient_name: str,
    sender: Sender,
    subject: str,
    text: str,
    html: str,
    attachment_path: Path,
    attachment_name: str,
) -> bool:
    """
    Send a report email with a CSV attachment.

    Args:
        recipient_email: Recipient email address
        recipient_name: Recipient display name
        sender: No-reply sender identity
        subject: Subject line
        text: Plain-text body
        html: HTML body
        attachment_path: Path of the CSV file to attach
        attachment_name: File name shown to the recipient

    Returns:
        True if Resend accepted the message, False otherwise.
        Transport exceptions are not caught here.
    """
    _init_resend()
    settings = get_settings()

    if not settings.resend_api_key:
        logger.bind(email=recipient_email, subject=subject).warning("resend_api_key_not_set")
        return False

    to = f"{recipient_name} <{recipient_email}>" if recipient_name else recipient_email
    content = Path(attachment_path).read_bytes()

    logger.bind(email=recipient_email, attachment=attachment_name).info("sending_report_email")

    response = resend.Emails.send(
        {
            "from": sender.from_header,
            "to": [to],
            "subject": subject,
            "text": text,
            "html": html,
            "attachments": [{"filename": attachment_name, "content": list(content)}],
        }
    )

    message_id = response.get("id") if response else None
    if not message_id:
        logger.bind(email=recipient_email).warning("report_email_not_accepted")
        return False

    logger.bind(email=recipient_email, message_id=message_id).info("report_email_sent")
    return True
