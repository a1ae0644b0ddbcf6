"""
Google Gmail API Service for outgoing notification mail.
Sends MIME messages through users.messages.send as the delegated mailbox.
/services/google_gmail_service.py
"""

import base64
from dataclasses import dataclass
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any

from complaint_desk.infrastructure.observability.logging import get_logger
from complaint_desk.services.google_auth_service import (
    GMAIL_SEND_SCOPE,
    GoogleAuthError,
    GoogleAuthService,
)
from complaint_desk.services.google_http import GoogleAPIError, GoogleHTTPService
from complaint_desk.utils.text import is_valid_email

logger = get_logger(__name__)

GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"
GMAIL_USER_ID = "me"


class GoogleGmailError(GoogleAPIError):
    """Custom exception for Google Gmail API errors."""


@dataclass
class MailAttachment:
    filename: str
    content: bytes
    mime_type: str = "application/octet-stream"


class GoogleGmailService(GoogleHTTPService):
    """
    Gmail send client.

    Invalid recipient addresses are dropped before sending; a message with
    no valid recipient left is skipped rather than rejected by the API.
    """

    service_name = "Gmail"
    error_class = GoogleGmailError
    error_messages = {
        "403": "Gmail access denied. Check domain-wide delegation.",
        "400": "Invalid email message format.",
        "401": "Gmail authorization expired.",
        "429": "Too many Gmail requests. Please try again later.",
        "500": "Gmail service temporarily unavailable.",
    }

    def __init__(
        self,
        auth: GoogleAuthService,
        sender: str | None = None,
        delegated_user: str | None = None,
        client=None,
    ):
        super().__init__(client)
        self._auth = auth
        self.sender = sender
        self.delegated_user = delegated_user

    def _build_message(
        self,
        to: list[str],
        subject: str,
        html: str | None,
        text: str | None,
        attachments: list[MailAttachment],
    ) -> str:
        msg = MIMEMultipart("mixed")
        msg["To"] = ", ".join(to)
        msg["Subject"] = subject
        if self.sender:
            msg["From"] = formataddr(("Complaint Desk", self.sender))

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(text or "", "plain", "utf-8"))
        if html:
            body.attach(MIMEText(html, "html", "utf-8"))
        msg.attach(body)

        for attachment in attachments:
            maintype, _, subtype = attachment.mime_type.partition("/")
            if maintype == "text":
                part = MIMEText(attachment.content.decode("utf-8"), subtype or "plain", "utf-8")
            else:
                part = MIMEApplication(attachment.content, _subtype=subtype or "octet-stream")
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            msg.attach(part)

        return base64.urlsafe_b64encode(msg.as_bytes()).decode("utf-8")

    async def send_message(
        self,
        to: list[str],
        subject: str,
        html: str | None = None,
        text: str | None = None,
        attachments: list[MailAttachment] | None = None,
    ) -> dict | None:
        """
        Send an email message.

        Args:
            to: Recipient addresses (invalid ones are dropped)
            subject: Email subject
            html: HTML body
            text: Plain text body
            attachments: Files to attach

        Returns:
            dict: Sent message information, or None when nothing was sent

        Raises:
            GoogleGmailError: If sending fails
        """
        recipients = [address.strip() for address in to if is_valid_email(address)]
        if not recipients:
            logger.info("Skipping email without valid recipients", subject=subject)
            return None

        try:
            token = await self._auth.get_access_token([GMAIL_SEND_SCOPE], self.delegated_user)
        except GoogleAuthError as e:
            raise GoogleGmailError(str(e), error_code=e.error_code, status_code=e.status_code) from e

        raw_message = self._build_message(recipients, subject, html, text, attachments or [])
        url = f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}/messages/send"

        logger.info(
            "Sending Gmail message",
            recipient_count=len(recipients),
            subject=subject,
            attachment_count=len(attachments or []),
        )
        response = await self._request_with_retry(
            "POST", url, headers=self._get_auth_headers(token), json={"raw": raw_message}
        )
        data = self._handle_api_response(response, "send_message")
        logger.info("Message sent successfully", message_id=data.get("id"))
        return data

    def health_check(self) -> dict[str, Any]:
        return {
            "healthy": self._auth.is_configured() and bool(self.sender),
            "service": "google_gmail",
            "delegated": bool(self.delegated_user),
        }
