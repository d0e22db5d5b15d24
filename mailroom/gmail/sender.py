"""Send customer notification emails through the staff user's Gmail account."""

from __future__ import annotations

import base64
import html
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from googleapiclient.errors import HttpError

from mailroom.gmail.oauth import GmailOAuthService
from mailroom.notifications.templates import render_template
from mailroom.observability.logging import get_logger
from mailroom.observability.telemetry import counter, log_event

logger = get_logger(__name__)


class EmailSendError(RuntimeError):
    """The message could not be handed to Gmail."""


def build_html_body(body: str) -> str:
    escaped = html.escape(body).replace("\n", "<br>")
    return (
        "<!DOCTYPE html>\n<html>\n<body style=\"font-family: Arial, sans-serif; line-height: 1.6;\">\n"
        f"<div>{escaped}</div>\n</body>\n</html>"
    )


def build_message(sender: str | None, to: str, subject: str, body: str) -> dict[str, str]:
    """Gmail API payload: a multipart/alternative message, base64url encoded."""
    message = MIMEMultipart("alternative")
    message["To"] = to
    message["Subject"] = subject
    if sender:
        message["From"] = sender
    message.attach(MIMEText(body, "plain", "utf-8"))
    message.attach(MIMEText(build_html_body(body), "html", "utf-8"))
    return {"raw": base64.urlsafe_b64encode(message.as_bytes()).decode()}


class GmailSender:
    def __init__(self, oauth_service: GmailOAuthService | None = None):
        self.oauth_service = oauth_service or GmailOAuthService()

    def send_template_email(
        self,
        user_id: str,
        to: str | None,
        subject: str,
        body: str,
        variables: dict[str, Any],
    ) -> str:
        """
        Render a template and send it from the user's connected Gmail.

        Returns:
            Gmail message id

        Raises:
            EmailSendError: No recipient, Gmail not connected, or Gmail API failure
        """
        if not to:
            raise EmailSendError("Contact has no email address")

        rendered_subject = render_template(subject, variables)
        rendered_body = render_template(body, variables)

        try:
            service = self.oauth_service.build_gmail_service(user_id)
        except ValueError as e:
            raise EmailSendError(str(e)) from e

        payload = build_message(self.oauth_service.get_gmail_address(user_id), to, rendered_subject, rendered_body)

        try:
            sent = service.users().messages().send(userId="me", body=payload).execute()
        except HttpError as e:
            counter("gmail.send.error")
            log_event("gmail.send.error", status=e.resp.status, user_id=user_id)
            raise EmailSendError(f"Gmail API error: {e}") from e

        counter("gmail.send.count")
        logger.info("Sent notification email for user %s (message %s)", user_id, sent.get("id"))
        return sent.get("id", "")
