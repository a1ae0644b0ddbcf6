"""
Post-commit notifications.

`plan_notifications` decides who hears about a committed change by diffing
the record before and after. `NotificationDispatcher` delivers the plan in a
background task: delivery never blocks the response and its failures are
logged, never raised.
"""

import asyncio
import html
from dataclasses import dataclass, field
from typing import Protocol

from complaint_desk.infrastructure.observability.logging import get_logger, safe_error
from complaint_desk.models.domain.complaint_domain import (
    Complaint,
    ComplaintStatus,
    NotificationEmail,
    utc_now,
)
from complaint_desk.models.domain.directory_domain import DirectorySnapshot
from complaint_desk.services.complaints.closure_artifact import (
    ClosureArtifactRenderer,
    TextClosureArtifactRenderer,
    build_closure_artifact,
)
from complaint_desk.services.google_gmail_service import MailAttachment
from complaint_desk.utils.text import is_valid_email, normalize_id

logger = get_logger(__name__)

ASSIGNED = "assigned"
UNASSIGNED = "unassigned"
AWAITING_PRINCIPAL = "awaiting_principal"
DEPARTMENT_CHANGED = "department_changed"
CLOSED_REPORTER = "closed_reporter"


@dataclass
class NotificationIntent:
    kind: str
    recipients: list[str]
    subject: str
    lines: list[str] = field(default_factory=list)


class Mailer(Protocol):
    async def send_message(
        self,
        to: list[str],
        subject: str,
        html: str | None = None,
        text: str | None = None,
        attachments: list[MailAttachment] | None = None,
    ) -> dict | None: ...


def _valid(addresses) -> list[str]:
    return [address.strip() for address in addresses if address and is_valid_email(address)]


def plan_notifications(
    before: Complaint, after: Complaint, directory: DirectorySnapshot
) -> list[NotificationIntent]:
    intents: list[NotificationIntent] = []
    prev_assignee = normalize_id(before.assignee_user_id)
    next_assignee = normalize_id(after.assignee_user_id)

    if next_assignee and next_assignee != prev_assignee:
        user = directory.get_user(next_assignee)
        if user:
            intents.append(
                NotificationIntent(
                    kind=ASSIGNED,
                    recipients=_valid([user.contact_email]),
                    subject=f"פנייה חדשה הוקצתה אליך (#{after.id})",
                    lines=[f"{user.name}, הוקצתה לך פנייה חדשה במערכת."],
                )
            )

    if prev_assignee and prev_assignee != next_assignee:
        user = directory.get_user(prev_assignee)
        if user:
            intents.append(
                NotificationIntent(
                    kind=UNASSIGNED,
                    recipients=_valid([user.contact_email]),
                    subject=f"פנייה הועברה ממך (#{after.id})",
                    lines=[f"{user.name}, פנייה שהייתה משויכת אליך הועברה למטפל/ת אחר/ת."],
                )
            )

    if (
        after.status == ComplaintStatus.AWAITING_PRINCIPAL_REVIEW
        and before.status != ComplaintStatus.AWAITING_PRINCIPAL_REVIEW
    ):
        intents.append(
            NotificationIntent(
                kind=AWAITING_PRINCIPAL,
                recipients=_valid(user.contact_email for user in directory.principals()),
                subject=f"פנייה ממתינה לסקירת מנהל/ת (#{after.id})",
                lines=["פנייה ממתינה לסקירת מנהל/ת."],
            )
        )

    if normalize_id(after.department_id) != normalize_id(before.department_id):
        department = directory.get_department(after.department_id)
        manager = directory.get_user(department.manager_user_id) if department else None
        if manager:
            intents.append(
                NotificationIntent(
                    kind=DEPARTMENT_CHANGED,
                    recipients=_valid([manager.contact_email]),
                    subject=f"פנייה הועברה למחלקה {department.name} (#{after.id})",
                    lines=[f"{manager.name}, פנייה הועברה לטיפול המחלקה שלך."],
                )
            )

    if after.status == ComplaintStatus.CLOSED and before.status != ComplaintStatus.CLOSED:
        intents.append(
            NotificationIntent(
                kind=CLOSED_REPORTER,
                recipients=_valid([after.reporter.email]),
                subject=f"הטיפול בפנייתך הסתיים (#{after.id})",
                lines=[
                    f"{after.reporter.full_name or 'שלום'}, הטיפול בפנייתך הסתיים.",
                    "מצורף סיכום הטיפול.",
                ],
            )
        )

    return intents


def render_email(intent: NotificationIntent, complaint: Complaint, link: str | None) -> tuple[str, str]:
    """(html, text) bodies; the staff link is left out of reporter mail."""
    text_lines = list(intent.lines)
    text_lines.append(f"כותרת: {complaint.title or complaint.subject}")
    if link:
        text_lines.append(link)
    paragraphs = "".join(f"<p>{html.escape(line)}</p>" for line in text_lines)
    body = f'<div dir="rtl" style="font-family:Arial,sans-serif">{paragraphs}</div>'
    return body, "\n".join(text_lines)


class NotificationDispatcher:
    def __init__(
        self,
        mailer: Mailer | None,
        directory,
        repository=None,
        renderer: ClosureArtifactRenderer | None = None,
        link_builder=None,
    ):
        self.mailer = mailer
        self.directory = directory
        self.repository = repository
        self.renderer = renderer or TextClosureArtifactRenderer()
        self.link_builder = link_builder or (lambda path: path)
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, before: Complaint, after: Complaint) -> asyncio.Task | None:
        """Schedule delivery and return immediately."""
        if self.mailer is None:
            logger.debug("Mailer not configured, skipping notifications", complaint_id=after.id)
            return None
        task = asyncio.create_task(self._deliver(before, after))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _deliver(self, before: Complaint, after: Complaint) -> None:
        try:
            directory = await self.directory.snapshot()
            intents = plan_notifications(before, after, directory)
        except Exception as e:
            logger.error(
                "Notification planning failed", complaint_id=after.id, error=safe_error(e)
            )
            return

        for intent in intents:
            try:
                await self._send(intent, after, directory)
            except Exception as e:
                logger.error(
                    "Notification delivery failed",
                    complaint_id=after.id,
                    kind=intent.kind,
                    error=safe_error(e),
                )

    async def _send(
        self, intent: NotificationIntent, complaint: Complaint, directory: DirectorySnapshot
    ) -> None:
        if not intent.recipients:
            logger.info("No valid recipients", complaint_id=complaint.id, kind=intent.kind)
            return

        if intent.kind != CLOSED_REPORTER:
            link = self.link_builder(f"/complaints/{complaint.id}")
            body_html, body_text = render_email(intent, complaint, link)
            await self.mailer.send_message(intent.recipients, intent.subject, body_html, body_text)
            logger.info("Notification sent", complaint_id=complaint.id, kind=intent.kind)
            return

        closure = build_closure_artifact(self.renderer, complaint, directory)
        artifact = MailAttachment(closure.filename, closure.content, closure.mime_type)
        body_html, body_text = render_email(intent, complaint, None)
        await self.mailer.send_message(
            intent.recipients, intent.subject, body_html, body_text, [artifact]
        )
        logger.info("Closure notice sent", complaint_id=complaint.id)

        if self.repository is not None:
            record = NotificationEmail(sent=True, sent_at=utc_now(), to=intent.recipients[0])
            await self.repository.update_notification_email(complaint.id, record)
