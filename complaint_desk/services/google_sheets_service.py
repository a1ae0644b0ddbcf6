"""
Google Sheets API client.
Low-level values API access used by the complaint store and the directory.
"""

from typing import Any
from urllib.parse import quote

from complaint_desk.infrastructure.observability.logging import get_logger
from complaint_desk.services.google_auth_service import (
    SHEETS_SCOPE,
    GoogleAuthError,
    GoogleAuthService,
)
from complaint_desk.services.google_http import GoogleAPIError, GoogleHTTPService

logger = get_logger(__name__)

SHEETS_API_BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"


class GoogleSheetsError(GoogleAPIError):
    """Custom exception for Google Sheets API errors."""


class GoogleSheetsService(GoogleHTTPService):
    """Read and write cell ranges with a service-account token."""

    service_name = "Sheets"
    error_class = GoogleSheetsError
    error_messages = {
        "403": "Spreadsheet access denied. Share it with the service account.",
        "404": "Spreadsheet or tab not found.",
        "400": "Invalid range or payload.",
        "429": "Too many Sheets requests. Please try again later.",
        "500": "Google Sheets temporarily unavailable.",
    }

    def __init__(self, auth: GoogleAuthService, client=None):
        super().__init__(client)
        self._auth = auth

    async def _headers(self) -> dict:
        try:
            token = await self._auth.get_access_token([SHEETS_SCOPE])
        except GoogleAuthError as e:
            raise GoogleSheetsError(str(e), error_code=e.error_code, status_code=e.status_code) from e
        return self._get_auth_headers(token)

    def _values_url(self, spreadsheet_id: str, cell_range: str, suffix: str = "") -> str:
        return f"{SHEETS_API_BASE_URL}/{spreadsheet_id}/values/{quote(cell_range, safe='!:')}{suffix}"

    async def get_values(self, spreadsheet_id: str, cell_range: str) -> list[list[str]]:
        """
        Read a range. Sheets drops empty trailing rows and cells, so rows may
        be ragged.
        """
        url = self._values_url(spreadsheet_id, cell_range)
        response = await self._request_with_retry(
            "GET", url, headers=await self._headers(), params={"majorDimension": "ROWS"}
        )
        data = self._handle_api_response(response, "get_values")
        values = data.get("values", [])
        logger.debug("Sheet range read", cell_range=cell_range, row_count=len(values))
        return values

    async def update_values(
        self, spreadsheet_id: str, cell_range: str, rows: list[list[Any]]
    ) -> dict:
        """Overwrite a range with RAW (uninterpreted) values."""
        url = self._values_url(spreadsheet_id, cell_range)
        response = await self._request_with_retry(
            "PUT",
            url,
            headers=await self._headers(),
            params={"valueInputOption": "RAW"},
            json={"range": cell_range, "majorDimension": "ROWS", "values": rows},
        )
        data = self._handle_api_response(response, "update_values")
        logger.debug(
            "Sheet range updated", cell_range=cell_range, updated_cells=data.get("updatedCells")
        )
        return data

    async def append_values(
        self, spreadsheet_id: str, cell_range: str, rows: list[list[Any]]
    ) -> dict:
        url = self._values_url(spreadsheet_id, cell_range, ":append")
        response = await self._request_with_retry(
            "POST",
            url,
            headers=await self._headers(),
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json={"majorDimension": "ROWS", "values": rows},
        )
        return self._handle_api_response(response, "append_values")

    async def health_check(self, spreadsheet_id: str) -> dict[str, Any]:
        """Metadata fetch used by the readiness probe. Never raises."""
        try:
            url = f"{SHEETS_API_BASE_URL}/{spreadsheet_id}"
            response = await self._request_with_retry(
                "GET", url, headers=await self._headers(), params={"fields": "spreadsheetId"}
            )
            self._handle_api_response(response, "health_check")
            return {"healthy": True, "service": "google_sheets"}
        except GoogleAPIError as e:
            logger.error("Google Sheets health check failed", error=str(e)[:200])
            return {"healthy": False, "service": "google_sheets", "error": str(e)[:200]}
