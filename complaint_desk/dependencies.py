"""
Service wiring shared by the routes.

`build_container` assembles the collaborators once at startup; routes reach
them through FastAPI dependencies so tests can override any of them with
`app.dependency_overrides`.
"""

from dataclasses import dataclass

from fastapi import Request

from complaint_desk.config import Settings
from complaint_desk.infrastructure.observability.logging import get_logger
from complaint_desk.models.domain.directory_domain import DirectorySnapshot
from complaint_desk.repositories.complaint_repository import (
    ComplaintRepository,
    InMemoryComplaintTable,
    SheetsComplaintTable,
)
from complaint_desk.repositories.directory_repository import (
    DirectoryRepository,
    StaticDirectoryRepository,
)
from complaint_desk.services.complaints.notifications import NotificationDispatcher
from complaint_desk.services.complaints.workflow_service import ComplaintWorkflowService
from complaint_desk.services.google_auth_service import GoogleAuthService
from complaint_desk.services.google_gmail_service import GoogleGmailService
from complaint_desk.services.google_sheets_service import GoogleSheetsService
from complaint_desk.services.redis_client import FastRedisClient

logger = get_logger(__name__)


@dataclass
class AppContainer:
    workflow: ComplaintWorkflowService
    directory: DirectoryRepository | StaticDirectoryRepository
    repository: ComplaintRepository
    dispatcher: NotificationDispatcher
    sheets: GoogleSheetsService | None = None
    gmail: GoogleGmailService | None = None
    auth: GoogleAuthService | None = None
    redis: FastRedisClient | None = None
    spreadsheet_id: str | None = None

    async def close(self) -> None:
        await self.dispatcher.drain()
        for client in (self.sheets, self.gmail, self.auth):
            if client is not None:
                await client.close()
        if self.redis is not None:
            await self.redis.close()


def build_container(settings: Settings) -> AppContainer:
    """Sheets-backed wiring when a service account is configured, in-memory otherwise."""
    if not settings.sheets_configured():
        logger.warning("Google Sheets not configured, using in-memory store")
        directory = StaticDirectoryRepository(DirectorySnapshot(users=[], departments=[]))
        repository = ComplaintRepository(InMemoryComplaintTable())
        dispatcher = NotificationDispatcher(None, directory, repository)
        workflow = ComplaintWorkflowService(
            repository,
            directory,
            dispatcher,
            sla_days=settings.COMPLAINT_SLA_DAYS,
            renderer=dispatcher.renderer,
        )
        return AppContainer(
            workflow=workflow, directory=directory, repository=repository, dispatcher=dispatcher
        )

    auth = GoogleAuthService(settings.GOOGLE_SA_CLIENT_EMAIL, settings.private_key())
    sheets = GoogleSheetsService(auth)
    redis_client = FastRedisClient(settings.REDIS_URL) if settings.REDIS_URL else None

    directory = DirectoryRepository(
        sheets,
        settings.GOOGLE_SHEETS_ID or settings.GOOGLE_SHEETS_COMPLAINTS_ID,
        users_tab=settings.GOOGLE_USERS_TAB,
        departments_tab=settings.GOOGLE_DEPARTMENTS_TAB,
        cache=redis_client,
        cache_ttl_seconds=settings.DIRECTORY_CACHE_TTL_SECONDS,
    )
    repository = ComplaintRepository(
        SheetsComplaintTable(
            sheets, settings.GOOGLE_SHEETS_COMPLAINTS_ID, tab=settings.GOOGLE_COMPLAINTS_TAB
        )
    )

    gmail = None
    if settings.MAIL_FROM:
        gmail = GoogleGmailService(
            auth, sender=settings.MAIL_FROM, delegated_user=settings.GOOGLE_SA_DELEGATED_USER
        )
    dispatcher = NotificationDispatcher(
        gmail, directory, repository, link_builder=settings.app_link
    )
    workflow = ComplaintWorkflowService(
        repository,
        directory,
        dispatcher,
        sla_days=settings.COMPLAINT_SLA_DAYS,
        renderer=dispatcher.renderer,
    )
    return AppContainer(
        workflow=workflow,
        directory=directory,
        repository=repository,
        dispatcher=dispatcher,
        sheets=sheets,
        gmail=gmail,
        auth=auth,
        redis=redis_client,
        spreadsheet_id=settings.GOOGLE_SHEETS_COMPLAINTS_ID,
    )


def get_container(request: Request) -> AppContainer:
    return request.app.state.container


def get_workflow_service(request: Request) -> ComplaintWorkflowService:
    return get_container(request).workflow


def get_directory(request: Request):
    return get_container(request).directory
