from __future__ import annotations

from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr, make_msgid

from email_scheduler.models import Sender

ACTIVATION_SUBJECT = "Account Activation Reminder"
ACTIVATION_BODY = "This is an automated email to keep your account active. No action is required."
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_timestamp(timestamp: datetime) -> str:
    return timestamp.strftime(TIMESTAMP_FORMAT)


def build_activation_message(*, sender: Sender, recipient_email: str, sent_at: datetime) -> EmailMessage:
    message = EmailMessage()
    message["From"] = formataddr((sender.name or "", sender.email))
    message["To"] = recipient_email
    message["Subject"] = ACTIVATION_SUBJECT
    message["Message-ID"] = make_msgid()

    body_text = f"{ACTIVATION_BODY}\n\nSent at: {format_timestamp(sent_at)}"
    message.set_content(body_text, subtype="plain", charset="utf-8")
    return message
