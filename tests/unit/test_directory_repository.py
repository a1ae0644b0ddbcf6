"""
Tests for directory loading: sheet row parsing, lookups and the Redis cache.
"""

import json
from unittest.mock import AsyncMock

import pytest

from complaint_desk.models.domain.directory_domain import DirectorySnapshot, Role
from complaint_desk.repositories.directory_repository import (
    CACHE_KEY,
    DirectoryRepository,
    rows_to_departments,
    rows_to_users,
)
from complaint_desk.services.complaints.errors import StoreUnavailableError
from complaint_desk.services.google_sheets_service import GoogleSheetsError

USER_ROWS = [
    ["1", "Dana Levi", "12", "dana@army.test", "dana@school.test", "employee", "d1"],
    ["2", "Rina", "7", "", "principal@school.test", "PRINCIPAL"],
    ["3", "No Id", ""],
    ["", "Header", "id"],
    ["4", "Gil", "'0013", "gil@army.test", "not-an-email", "janitor", "d1"],
]
DEPARTMENT_ROWS = [
    ["name", "id", "managerUserId", "members"],
    ["Transport", "d1", "5", '["12", 13]'],
    ["יועצות"],
    ["Broken", "d3", "", "{oops"],
]


def test_rows_to_users():
    users = rows_to_users(USER_ROWS)

    assert [u.id for u in users] == ["12", "7", "'0013"]
    dana = users[0]
    assert dana.role == Role.EMPLOYEE
    assert dana.department_id == "d1"
    assert dana.contact_email == "dana@school.test"
    assert users[1].role == Role.PRINCIPAL
    assert users[1].department_id == ""
    # Unknown role defaults to employee; invalid googleMail falls back to armyMail
    assert users[2].role == Role.EMPLOYEE
    assert users[2].contact_email == "gil@army.test"


def test_rows_to_departments_accepts_both_shapes():
    departments = rows_to_departments(DEPARTMENT_ROWS)

    assert [d.id for d in departments] == ["d1", "יועצות", "d3"]
    assert departments[0].manager_user_id == "5"
    assert departments[0].members == ["12", "13"]
    assert departments[1].name == "יועצות"
    assert departments[2].members == []


def test_snapshot_lookups():
    snapshot = DirectorySnapshot(rows_to_users(USER_ROWS), rows_to_departments(DEPARTMENT_ROWS))

    assert snapshot.get_user("013").name == "Gil"
    assert snapshot.get_user_by_email(" DANA@army.test ").id == "12"
    assert snapshot.get_user_by_email("principal@school.test").id == "7"
    assert snapshot.get_user_by_email(None) is None
    assert [u.id for u in snapshot.principals()] == ["7"]
    assert snapshot.is_member("12", "d1")
    assert snapshot.is_member("5", "d1")
    assert not snapshot.is_member("7", "d1")


def test_snapshot_dict_round_trip(snapshot):
    restored = DirectorySnapshot.from_dict(json.loads(json.dumps(snapshot.to_dict())))

    assert restored.get_user("u2") == snapshot.get_user("u2")
    assert restored.get_department("d1").members == ["u2", "u4"]


def _sheets() -> AsyncMock:
    sheets = AsyncMock()

    async def get_values(spreadsheet_id, cell_range):
        return USER_ROWS if cell_range.startswith("users!") else DEPARTMENT_ROWS

    sheets.get_values.side_effect = get_values
    return sheets


@pytest.mark.asyncio
async def test_snapshot_reads_both_tabs():
    sheets = _sheets()
    repository = DirectoryRepository(sheets, "dir-id")

    snapshot = await repository.snapshot()

    assert len(snapshot.users) == 3
    assert len(snapshot.departments) == 3
    ranges = [call.args[1] for call in sheets.get_values.await_args_list]
    assert ranges == ["users!A2:G", "departments!A:D"]


@pytest.mark.asyncio
async def test_snapshot_is_cached(fake_redis):
    sheets = _sheets()
    repository = DirectoryRepository(sheets, "dir-id", cache=fake_redis, cache_ttl_seconds=30)

    first = await repository.snapshot()
    second = await repository.snapshot()

    assert CACHE_KEY in fake_redis.store
    assert sheets.get_values.await_count == 2
    assert [u.id for u in second.users] == [u.id for u in first.users]

    await repository.invalidate()
    assert CACHE_KEY not in fake_redis.store


@pytest.mark.asyncio
async def test_unreadable_cache_entry_is_ignored(fake_redis):
    fake_redis.store[CACHE_KEY] = "{not json"
    repository = DirectoryRepository(_sheets(), "dir-id", cache=fake_redis)

    snapshot = await repository.snapshot()

    assert len(snapshot.users) == 3
    assert json.loads(fake_redis.store[CACHE_KEY])["users"]


@pytest.mark.asyncio
async def test_sheet_failure_is_store_unavailable():
    sheets = AsyncMock()
    sheets.get_values.side_effect = GoogleSheetsError("denied", status_code=403)

    with pytest.raises(StoreUnavailableError):
        await DirectoryRepository(sheets, "dir-id").snapshot()
