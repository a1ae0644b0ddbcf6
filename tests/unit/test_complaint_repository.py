"""
Tests for the complaint store adapter: row location, compare-and-swap
writes and the Sheets-backed table.
"""

from unittest.mock import AsyncMock

import pytest

from complaint_desk.models.domain.complaint_domain import ComplaintStatus, NotificationEmail
from complaint_desk.repositories.complaint_repository import (
    ComplaintRepository,
    InMemoryComplaintTable,
    SheetsComplaintTable,
    locate_complaint_row,
)
from complaint_desk.repositories.complaint_row_mapper import COMPLAINT_COLUMNS, complaint_to_row
from complaint_desk.services.complaints.errors import (
    ConcurrentModificationError,
    NotFoundError,
    StoreUnavailableError,
)
from complaint_desk.services.google_sheets_service import GoogleSheetsError


def test_locate_skips_header_and_normalises_ids():
    rows = [list(COMPLAINT_COLUMNS), ["'0041"], ["\u200f 42 "], ["43"]]

    assert locate_complaint_row(rows, "42") == (3, ["\u200f 42 "])
    assert locate_complaint_row(rows, "41")[0] == 2
    assert locate_complaint_row(rows, "99") is None
    assert locate_complaint_row(rows, "  ") is None


def test_locate_without_header():
    assert locate_complaint_row([["7"], ["8"]], "8") == (2, ["8"])


def test_locate_never_matches_header_row():
    assert locate_complaint_row([list(COMPLAINT_COLUMNS)], "id") is None


@pytest.mark.asyncio
async def test_load_returns_row_number_and_version(complaint_factory):
    table = InMemoryComplaintTable([complaint_to_row(complaint_factory(id="41"))])
    table.append(complaint_factory())
    repository = ComplaintRepository(table)

    stored = await repository.load("42")

    assert stored.row_number == 3
    assert stored.version == "2024-01-01T09:00:00.000Z"
    assert stored.complaint.id == "42"
    assert await repository.load("99") is None


@pytest.mark.asyncio
async def test_list_all_skips_undecodable_rows(complaint_factory):
    table = InMemoryComplaintTable([complaint_to_row(complaint_factory()), ["", "junk"], []])
    complaints = await ComplaintRepository(table).list_all()
    assert [c.id for c in complaints] == ["42"]


@pytest.mark.asyncio
async def test_save_writes_full_row_at_current_position(complaint_factory, clock):
    table = InMemoryComplaintTable([complaint_to_row(complaint_factory())])
    repository = ComplaintRepository(table)
    stored = await repository.load("42")

    # Another row was inserted above ours in the meantime
    table.rows.insert(1, complaint_to_row(complaint_factory(id="40")))
    updated = stored.complaint.model_copy(
        update={
            "status": ComplaintStatus.ASSIGNED,
            "assignee_user_id": "u2",
            "updated_at": clock(),
        }
    )
    committed = await repository.save(stored, updated)

    row_number, row = table.writes[-1]
    assert row_number == 3
    assert len(row) == len(COMPLAINT_COLUMNS)
    assert row == complaint_to_row(updated)
    assert committed.row_number == 3
    assert committed.version == row[2]


@pytest.mark.asyncio
async def test_save_rejects_stale_version(complaint_factory, clock):
    table = InMemoryComplaintTable([complaint_to_row(complaint_factory())])
    repository = ComplaintRepository(table)
    first = await repository.load("42")
    second = await repository.load("42")

    await repository.save(first, first.complaint.model_copy(update={"updated_at": clock()}))

    with pytest.raises(ConcurrentModificationError):
        await repository.save(second, second.complaint.model_copy(update={"updated_at": clock()}))
    assert len(table.writes) == 1


@pytest.mark.asyncio
async def test_save_when_row_vanished(complaint_factory):
    table = InMemoryComplaintTable([complaint_to_row(complaint_factory())])
    repository = ComplaintRepository(table)
    stored = await repository.load("42")
    del table.rows[1]

    with pytest.raises(NotFoundError):
        await repository.save(stored, stored.complaint)


@pytest.mark.asyncio
async def test_update_notification_email_keeps_updated_at(complaint_factory):
    table = InMemoryComplaintTable([complaint_to_row(complaint_factory())])
    repository = ComplaintRepository(table)

    await repository.update_notification_email(
        "42", NotificationEmail(sent=True, to="parent@example.com")
    )

    stored = await repository.load("42")
    assert stored.complaint.notification_email.sent is True
    assert stored.version == "2024-01-01T09:00:00.000Z"


@pytest.mark.asyncio
async def test_sheets_table_ranges():
    sheets = AsyncMock()
    sheets.get_values.return_value = [["id"], ["42"]]
    table = SheetsComplaintTable(sheets, "sheet-id", tab="database")

    assert await table.read_rows() == [["id"], ["42"]]
    sheets.get_values.assert_awaited_once_with("sheet-id", "database!A:X")

    await table.write_row(5, ["a", "b"])
    sheets.update_values.assert_awaited_once_with("sheet-id", "database!A5:X5", [["a", "b"]])


@pytest.mark.asyncio
async def test_sheets_table_failures_become_store_unavailable():
    sheets = AsyncMock()
    sheets.get_values.side_effect = GoogleSheetsError("quota", status_code=429)
    sheets.update_values.side_effect = GoogleSheetsError("boom", status_code=500)
    table = SheetsComplaintTable(sheets, "sheet-id")

    with pytest.raises(StoreUnavailableError) as read_error:
        await table.read_rows()
    with pytest.raises(StoreUnavailableError) as write_error:
        await table.write_row(2, ["x"])

    assert read_error.value.operation == "read"
    assert read_error.value.status_code == 503
    assert write_error.value.recoverable is False
