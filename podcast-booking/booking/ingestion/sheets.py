"""
Google Sheets integration for reading the Podscan ids of a consumer's
podcast list (column E of the first sheet).
Authenticates with a service account taken from GOOGLE_SERVICE_ACCOUNT_JSON.
"""

import asyncio
import json
import logging
import re
from typing import List, Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..config import settings

logger = logging.getLogger(__name__)

# Google Sheets API scopes
SCOPES = ['https://www.googleapis.com/auth/spreadsheets.readonly']

_SPREADSHEET_URL = re.compile(r"/d/([a-zA-Z0-9-_]+)")


class SheetReadError(Exception):
    """The spreadsheet could not be read (permissions, bad id, API error)."""


def extract_spreadsheet_id(url_or_id: str) -> Optional[str]:
    """
    Accept either a bare spreadsheet id or a full Google Sheets URL.

    >>> extract_spreadsheet_id("https://docs.google.com/spreadsheets/d/abc-123_X/edit#gid=0")
    'abc-123_X'
    """
    if not url_or_id:
        return None
    value = url_or_id.strip()
    match = _SPREADSHEET_URL.search(value)
    if match:
        return match.group(1)
    if "/" in value:
        return None
    return value or None


def normalize_ids(values: List[List[str]], skip_header: bool = False) -> List[str]:
    """Flatten sheet rows into ids: trimmed, blanks dropped, first occurrence wins."""
    rows = values[1:] if skip_header else values
    ids = []
    for row in rows:
        if not row:
            continue
        cell = str(row[0]).strip()
        if cell:
            ids.append(cell)
    return list(dict.fromkeys(ids))


def get_sheets_service():
    """Build a Sheets API service from the service account credentials."""
    raw = settings.require("GOOGLE_SERVICE_ACCOUNT_JSON")
    try:
        info = json.loads(raw)
    except json.JSONDecodeError as e:
        raise SheetReadError(f"GOOGLE_SERVICE_ACCOUNT_JSON is not valid JSON: {e}") from e
    creds = service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
    return build('sheets', 'v4', credentials=creds, cache_discovery=False)


class SheetReader:
    """Reads Podscan ids out of a consumer's spreadsheet."""

    def __init__(self, service=None):
        self._service = service

    @property
    def service(self):
        if self._service is None:
            self._service = get_sheets_service()
        return self._service

    def first_sheet_title(self, spreadsheet_id: str) -> str:
        try:
            meta = self.service.spreadsheets().get(
                spreadsheetId=spreadsheet_id,
                fields="sheets.properties",
            ).execute()
        except HttpError as error:
            logger.error(f"❌ Failed to read spreadsheet metadata for {spreadsheet_id}: {error}")
            raise SheetReadError(f"Failed to access spreadsheet {spreadsheet_id}: {error}") from error

        sheets = meta.get("sheets") or []
        if not sheets:
            raise SheetReadError(f"Spreadsheet {spreadsheet_id} has no sheets")
        return sheets[0].get("properties", {}).get("title", "Sheet1")

    def read_podcast_ids(self, spreadsheet_id: str, column_range: str = "E:E", skip_header: bool = True) -> List[str]:
        """
        Read the id column of the first sheet.

        Args:
            spreadsheet_id: Google spreadsheet id
            column_range: A1 range within the first sheet, e.g. "E:E" or "E2:E1000"
            skip_header: Drop the first returned row

        Returns:
            Distinct Podscan ids in sheet order
        """
        title = self.first_sheet_title(spreadsheet_id)
        try:
            result = self.service.spreadsheets().values().get(
                spreadsheetId=spreadsheet_id,
                range=f"'{title}'!{column_range}",
            ).execute()
        except HttpError as error:
            logger.error(f"❌ Failed to read sheet range {column_range} from {spreadsheet_id}: {error}")
            raise SheetReadError(f"Failed to read spreadsheet {spreadsheet_id}: {error}") from error

        ids = normalize_ids(result.get("values") or [], skip_header=skip_header)
        logger.info(f"📄 Read {len(ids)} podcast ids from sheet '{title}'")
        return ids

    async def aread_podcast_ids(self, spreadsheet_id: str, column_range: str = "E:E", skip_header: bool = True) -> List[str]:
        """Async wrapper; the Google client is blocking."""
        return await asyncio.to_thread(self.read_podcast_ids, spreadsheet_id, column_range, skip_header)
