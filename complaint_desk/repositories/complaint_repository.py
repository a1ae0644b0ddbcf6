"""
Complaint store adapter over a tabular backend (a Google Sheets tab).

The table has no row locks. Writes re-read the table, re-locate the row by
id and compare the row's updatedAt cell with the value the caller validated
against before overwriting the complete A..X row. This narrows, but does
not close, the window for lost updates between concurrent writers.
"""

from dataclasses import dataclass
from typing import Protocol

from complaint_desk.infrastructure.observability.logging import get_logger
from complaint_desk.models.domain.complaint_domain import Complaint, NotificationEmail
from complaint_desk.repositories.complaint_row_mapper import (
    COMPLAINT_COLUMNS,
    LAST_COLUMN,
    complaint_to_row,
    row_to_complaint,
    row_version,
)
from complaint_desk.services.complaints.errors import (
    ConcurrentModificationError,
    NotFoundError,
    StoreUnavailableError,
)
from complaint_desk.services.google_sheets_service import GoogleSheetsError, GoogleSheetsService
from complaint_desk.utils.text import normalize_id

logger = get_logger(__name__)


class ComplaintTable(Protocol):
    async def read_rows(self) -> list[list[str]]: ...

    async def write_row(self, row_number: int, row: list[str]) -> None: ...


class SheetsComplaintTable:
    """Complaints tab of the complaints workbook."""

    def __init__(self, sheets: GoogleSheetsService, spreadsheet_id: str, tab: str = "database"):
        self.sheets = sheets
        self.spreadsheet_id = spreadsheet_id
        self.tab = tab

    async def read_rows(self) -> list[list[str]]:
        try:
            return await self.sheets.get_values(self.spreadsheet_id, f"{self.tab}!A:{LAST_COLUMN}")
        except GoogleSheetsError as e:
            logger.error("Complaints read failed", error=str(e)[:200], status_code=e.status_code)
            raise StoreUnavailableError("Complaint store is unavailable", operation="read") from e

    async def write_row(self, row_number: int, row: list[str]) -> None:
        cell_range = f"{self.tab}!A{row_number}:{LAST_COLUMN}{row_number}"
        try:
            await self.sheets.update_values(self.spreadsheet_id, cell_range, [row])
        except GoogleSheetsError as e:
            logger.error(
                "Complaint write failed",
                row_number=row_number,
                error=str(e)[:200],
                status_code=e.status_code,
            )
            raise StoreUnavailableError(
                "Complaint store is unavailable", operation="write", recoverable=False
            ) from e


class InMemoryComplaintTable:
    """List-backed table with the same 1-based row numbering as a sheet."""

    def __init__(self, rows: list[list[str]] | None = None, header: bool = True):
        self.rows: list[list[str]] = []
        if header:
            self.rows.append(list(COMPLAINT_COLUMNS))
        self.rows.extend(rows or [])
        self.writes: list[tuple[int, list[str]]] = []

    async def read_rows(self) -> list[list[str]]:
        return [list(row) for row in self.rows]

    async def write_row(self, row_number: int, row: list[str]) -> None:
        while len(self.rows) < row_number:
            self.rows.append([])
        self.rows[row_number - 1] = list(row)
        self.writes.append((row_number, list(row)))

    def append(self, complaint: Complaint) -> None:
        self.rows.append(complaint_to_row(complaint))


@dataclass
class StoredComplaint:
    complaint: Complaint
    row_number: int
    # Raw updatedAt cell at load time; the write is refused if it moved
    version: str


def has_header(rows: list[list[str]]) -> bool:
    return bool(rows) and bool(rows[0]) and str(rows[0][0]).strip().lower() == "id"


def locate_complaint_row(rows: list[list[str]], complaint_id: str) -> tuple[int, list[str]] | None:
    """
    Find a complaint row by normalised id.

    Returns the 1-based sheet row number (header included) and the raw row.
    """
    wanted = normalize_id(complaint_id)
    if not wanted:
        return None
    offset = 1 if has_header(rows) else 0
    for index in range(offset, len(rows)):
        row = rows[index]
        if row and normalize_id(row[0]) == wanted:
            return index + 1, row
    return None


class ComplaintRepository:
    def __init__(self, table: ComplaintTable):
        self.table = table

    async def load(self, complaint_id: str) -> StoredComplaint | None:
        rows = await self.table.read_rows()
        located = locate_complaint_row(rows, complaint_id)
        if located is None:
            return None
        row_number, row = located
        complaint = row_to_complaint(row)
        if complaint is None:
            logger.warning("Complaint row is not decodable", row_number=row_number)
            return None
        return StoredComplaint(complaint=complaint, row_number=row_number, version=row_version(row))

    async def list_all(self) -> list[Complaint]:
        rows = await self.table.read_rows()
        offset = 1 if has_header(rows) else 0
        complaints = []
        for row in rows[offset:]:
            complaint = row_to_complaint(row)
            if complaint is not None:
                complaints.append(complaint)
        return complaints

    async def save(self, stored: StoredComplaint, updated: Complaint) -> StoredComplaint:
        """
        Compare-and-swap write of the complete row.

        Raises:
            NotFoundError: the row vanished since it was loaded
            ConcurrentModificationError: the row changed since it was loaded
            StoreUnavailableError: the backend failed
        """
        rows = await self.table.read_rows()
        located = locate_complaint_row(rows, stored.complaint.id)
        if located is None:
            raise NotFoundError("Complaint not found", complaint_id=stored.complaint.id)
        row_number, fresh_row = located

        current_version = row_version(fresh_row)
        if current_version != stored.version:
            logger.warning(
                "Complaint changed since it was read",
                complaint_id=stored.complaint.id,
                expected_version=stored.version,
                current_version=current_version,
            )
            raise ConcurrentModificationError(
                "Complaint was modified by someone else; reload and retry",
                complaint_id=stored.complaint.id,
            )
        if row_number != stored.row_number:
            logger.info(
                "Complaint row moved since it was read",
                complaint_id=stored.complaint.id,
                old_row=stored.row_number,
                new_row=row_number,
            )

        new_row = complaint_to_row(updated)
        await self.table.write_row(row_number, new_row)
        return StoredComplaint(complaint=updated, row_number=row_number, version=row_version(new_row))

    async def update_notification_email(
        self, complaint_id: str, record: NotificationEmail
    ) -> StoredComplaint:
        """Merge the closure-notice record into the freshly loaded row."""
        stored = await self.load(complaint_id)
        if stored is None:
            raise NotFoundError("Complaint not found", complaint_id=complaint_id)
        # updatedAt is kept: this is bookkeeping, not a workflow change
        updated = stored.complaint.model_copy(update={"notification_email": record})
        return await self.save(stored, updated)
