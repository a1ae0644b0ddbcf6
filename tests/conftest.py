from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from complaint_desk.models.domain.complaint_domain import (
    AssigneeLetter,
    Complaint,
    ComplaintStatus,
    ParentStudentReporter,
    ReviewCycle,
)
from complaint_desk.models.domain.directory_domain import (
    Actor,
    Department,
    DirectorySnapshot,
    DirectoryUser,
    Role,
)
from complaint_desk.repositories.complaint_repository import (
    ComplaintRepository,
    InMemoryComplaintTable,
)
from complaint_desk.repositories.complaint_row_mapper import complaint_to_row
from complaint_desk.repositories.directory_repository import StaticDirectoryRepository
from complaint_desk.services.complaints.workflow_service import ComplaintWorkflowService

CREATED_AT = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


def build_snapshot() -> DirectorySnapshot:
    users = [
        DirectoryUser(id="u1", name="Avi Admin", role=Role.ADMIN, google_mail="admin@school.test"),
        DirectoryUser(
            id="u2",
            name="Dana",
            role=Role.EMPLOYEE,
            department_id="d1",
            google_mail="dana@school.test",
        ),
        DirectoryUser(
            id="u3", name="Eli", role=Role.EMPLOYEE, department_id="d2", army_mail="eli@army.test"
        ),
        DirectoryUser(
            id="u4",
            name="Gil",
            role=Role.EMPLOYEE,
            department_id="d1",
            google_mail="gil@school.test",
        ),
        DirectoryUser(
            id="u5",
            name="Maya",
            role=Role.MANAGER,
            department_id="d1",
            google_mail="maya@school.test",
        ),
        DirectoryUser(
            id="u6",
            name="Noa",
            role=Role.MANAGER,
            department_id="d2",
            google_mail="noa@school.test",
        ),
        DirectoryUser(
            id="u7", name="Rina", role=Role.PRINCIPAL, google_mail="principal@school.test"
        ),
    ]
    departments = [
        Department(id="d1", name="Transport", manager_user_id="u5", members=["u2", "u4"]),
        Department(id="d2", name="Counseling", manager_user_id="u6", members=["u3"]),
    ]
    return DirectorySnapshot(users, departments)


def make_complaint(**overrides) -> Complaint:
    values = {
        "id": "42",
        "created_at": CREATED_AT,
        "updated_at": CREATED_AT,
        "subject": "הסעות",
        "title": "Late bus",
        "body": "The bus was late three times this week.",
        "department_id": "d1",
        "reporter": ParentStudentReporter(
            full_name="Parent One", email="parent@example.com", grade="5", class_number="2"
        ),
    }
    values.update(overrides)
    return Complaint(**values)


class FakeClock:
    """Advances one second per call so every write gets a fresh updatedAt."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 8, 0, tzinfo=UTC)):
        self.current = start

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(seconds=1)
        return self.current


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.enabled = True

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.store[key] = value
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None


class FakeMailer:
    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    async def send_message(self, to, subject, html=None, text=None, attachments=None):
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append(
            {"to": to, "subject": subject, "html": html, "text": text, "attachments": attachments}
        )
        return {"id": f"msg-{len(self.sent)}"}


@dataclass
class Desk:
    table: InMemoryComplaintTable
    repository: ComplaintRepository
    directory: StaticDirectoryRepository
    snapshot: DirectorySnapshot
    workflow: ComplaintWorkflowService
    dispatcher: MagicMock
    audit: MagicMock

    def actor(self, user_id: str) -> Actor:
        return Actor.from_user(self.snapshot.get_user(user_id))

    async def current(self, complaint_id: str = "42") -> Complaint:
        stored = await self.repository.load(complaint_id)
        return stored.complaint


@pytest.fixture
def snapshot():
    return build_snapshot()


@pytest.fixture
def complaint_factory():
    return make_complaint


@pytest.fixture
def awaiting_complaint():
    """Complaint u2 has written and submitted; the principal has not acted yet."""
    submitted = datetime(2024, 2, 1, 10, 0, tzinfo=UTC)
    return make_complaint(
        status=ComplaintStatus.AWAITING_PRINCIPAL_REVIEW,
        assignee_user_id="u2",
        assignee_letter=AssigneeLetter(
            body="Dear parent, we spoke with the bus company.",
            author_user_id="u2",
            updated_at=submitted,
            submitted_at=submitted,
        ),
        review_cycles=[ReviewCycle(submitted_at=submitted, submitted_by_user_id="u2")],
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_mailer():
    return FakeMailer()


@pytest.fixture
def desk(snapshot):
    table = InMemoryComplaintTable([complaint_to_row(make_complaint())])
    repository = ComplaintRepository(table)
    directory = StaticDirectoryRepository(snapshot)
    dispatcher = MagicMock()
    audit = MagicMock()
    audit.log = AsyncMock(return_value=True)
    workflow = ComplaintWorkflowService(
        repository, directory, dispatcher, audit=audit, clock=FakeClock()
    )
    return Desk(table, repository, directory, snapshot, workflow, dispatcher, audit)


@pytest.fixture
def actor_for(snapshot):
    def _actor(user_id: str) -> Actor:
        return Actor.from_user(snapshot.get_user(user_id))

    return _actor
