"""
Directory repository: staff users and departments read from the directory
workbook, optionally cached in Redis as one JSON snapshot.
"""

import json

from complaint_desk.infrastructure.observability.logging import get_logger
from complaint_desk.models.domain.directory_domain import (
    Department,
    DirectorySnapshot,
    DirectoryUser,
    Role,
)
from complaint_desk.services.complaints.errors import StoreUnavailableError
from complaint_desk.services.google_sheets_service import GoogleSheetsError, GoogleSheetsService
from complaint_desk.services.redis_client import FastRedisClient
from complaint_desk.utils.text import slugify, strip_rtl_marks

logger = get_logger(__name__)

CACHE_KEY = "complaint_desk:directory:v1"
_HEADER_NAMES = {"department", "departments", "name"}


def _cell(row: list, index: int) -> str:
    if index >= len(row) or row[index] is None:
        return ""
    return strip_rtl_marks(str(row[index])).strip()


def rows_to_users(rows: list[list]) -> list[DirectoryUser]:
    """users!A:G = count, fullName, id, armyMail, googleMail, role, department"""
    users = []
    for row in rows:
        user_id = _cell(row, 2)
        if not user_id or user_id.lower() == "id":
            continue
        users.append(
            DirectoryUser(
                id=user_id,
                name=_cell(row, 1),
                army_mail=_cell(row, 3) or None,
                google_mail=_cell(row, 4) or None,
                role=Role.parse(_cell(row, 5), default=Role.EMPLOYEE),
                department_id=_cell(row, 6),
            )
        )
    return users


def _members(cell: str) -> list[str]:
    if not cell:
        return []
    try:
        members = json.loads(cell)
    except ValueError:
        return []
    if not isinstance(members, list):
        return []
    return [str(member) for member in members]


def rows_to_departments(rows: list[list]) -> list[Department]:
    """
    Two shapes are accepted:
    - [name]: id synthesised from the name
    - [name, id, managerUserId?, membersJSON?]
    """
    departments = []
    for row in rows:
        name = _cell(row, 0)
        if not name or name.lower() in _HEADER_NAMES:
            continue
        department_id = _cell(row, 1)
        if department_id:
            departments.append(
                Department(
                    id=department_id,
                    name=name,
                    manager_user_id=_cell(row, 2) or None,
                    members=_members(_cell(row, 3)),
                )
            )
        else:
            departments.append(Department(id=slugify(name) or "dept", name=name))
    return departments


class StaticDirectoryRepository:
    """Fixed snapshot; local development and tests."""

    def __init__(self, snapshot: DirectorySnapshot):
        self._snapshot = snapshot

    async def snapshot(self) -> DirectorySnapshot:
        return self._snapshot

    async def invalidate(self) -> None:
        return None


class DirectoryRepository:
    def __init__(
        self,
        sheets: GoogleSheetsService,
        spreadsheet_id: str,
        users_tab: str = "users",
        departments_tab: str = "departments",
        cache: FastRedisClient | None = None,
        cache_ttl_seconds: int = 60,
    ):
        self.sheets = sheets
        self.spreadsheet_id = spreadsheet_id
        self.users_tab = users_tab
        self.departments_tab = departments_tab
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds

    async def _read_cache(self) -> DirectorySnapshot | None:
        if not self.cache or not self.cache.enabled:
            return None
        raw = await self.cache.get(CACHE_KEY)
        if not raw:
            return None
        try:
            return DirectorySnapshot.from_dict(json.loads(raw))
        except ValueError as e:
            # pydantic's ValidationError is a ValueError too
            logger.warning("Discarding unreadable directory cache entry", error=str(e)[:200])
            return None

    async def _write_cache(self, snapshot: DirectorySnapshot) -> None:
        if not self.cache or not self.cache.enabled:
            return
        payload = json.dumps(snapshot.to_dict(), ensure_ascii=False)
        await self.cache.set_with_ttl(CACHE_KEY, payload, self.cache_ttl_seconds)

    async def snapshot(self) -> DirectorySnapshot:
        cached = await self._read_cache()
        if cached is not None:
            return cached

        try:
            user_rows = await self.sheets.get_values(self.spreadsheet_id, f"{self.users_tab}!A2:G")
            department_rows = await self.sheets.get_values(
                self.spreadsheet_id, f"{self.departments_tab}!A:D"
            )
        except GoogleSheetsError as e:
            logger.error(
                "Failed to load directory",
                error=str(e)[:200],
                status_code=e.status_code,
            )
            raise StoreUnavailableError("Directory is unavailable", operation="directory_read") from e

        snapshot = DirectorySnapshot(rows_to_users(user_rows), rows_to_departments(department_rows))
        logger.info(
            "Directory loaded",
            user_count=len(snapshot.users),
            department_count=len(snapshot.departments),
        )
        await self._write_cache(snapshot)
        return snapshot

    async def invalidate(self) -> None:
        if self.cache and self.cache.enabled:
            await self.cache.delete(CACHE_KEY)
