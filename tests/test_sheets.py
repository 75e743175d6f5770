"""
Tests for reading Podscan ids from Google Sheets.
"""

from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError

from booking.ingestion.sheets import (
    SheetReadError,
    SheetReader,
    extract_spreadsheet_id,
    normalize_ids,
)


def _service(values, title="Podcasts"):
    service = MagicMock()
    spreadsheets = service.spreadsheets.return_value
    spreadsheets.get.return_value.execute.return_value = {"sheets": [{"properties": {"title": title}}]}
    spreadsheets.values.return_value.get.return_value.execute.return_value = {"values": values}
    return service


def _http_error(status=403):
    return HttpError(MagicMock(status=status, reason="Forbidden"), b"permission denied")


class TestExtractSpreadsheetId:

    def test_from_url(self):
        url = "https://docs.google.com/spreadsheets/d/1AbC-d_9/edit#gid=0"
        assert extract_spreadsheet_id(url) == "1AbC-d_9"

    def test_bare_id(self):
        assert extract_spreadsheet_id("  1AbC-d_9 ") == "1AbC-d_9"

    @pytest.mark.parametrize("value", ["", "   ", "https://example.com/not-a-sheet"])
    def test_invalid(self, value):
        assert extract_spreadsheet_id(value) is None


class TestNormalizeIds:

    def test_trims_drops_blanks_and_duplicates(self):
        rows = [["Podscan ID"], [" p1 "], [], [""], ["p2"], ["p1"], ["p3", "extra column"]]
        assert normalize_ids(rows, skip_header=True) == ["p1", "p2", "p3"]

    def test_without_header(self):
        assert normalize_ids([["p1"], ["p2"]]) == ["p1", "p2"]


class TestSheetReader:

    def test_reads_first_sheet_column(self):
        service = _service([["ID"], ["p1"], ["p2"]])
        reader = SheetReader(service=service)

        ids = reader.read_podcast_ids("sheet-1", "E:E", skip_header=True)

        assert ids == ["p1", "p2"]
        service.spreadsheets.return_value.values.return_value.get.assert_called_once_with(
            spreadsheetId="sheet-1", range="'Podcasts'!E:E"
        )

    def test_metadata_error_raises_sheet_read_error(self):
        service = MagicMock()
        service.spreadsheets.return_value.get.return_value.execute.side_effect = _http_error()

        with pytest.raises(SheetReadError):
            SheetReader(service=service).read_podcast_ids("sheet-1")

    def test_values_error_raises_sheet_read_error(self):
        service = _service([])
        service.spreadsheets.return_value.values.return_value.get.return_value.execute.side_effect = _http_error(404)

        with pytest.raises(SheetReadError):
            SheetReader(service=service).read_podcast_ids("sheet-1")

    def test_no_sheets(self):
        service = MagicMock()
        service.spreadsheets.return_value.get.return_value.execute.return_value = {"sheets": []}

        with pytest.raises(SheetReadError):
            SheetReader(service=service).first_sheet_title("sheet-1")

    @pytest.mark.asyncio
    async def test_async_read(self):
        reader = SheetReader(service=_service([["p9"]]))
        assert await reader.aread_podcast_ids("sheet-1", "E2:E1000", skip_header=False) == ["p9"]

    def test_missing_credentials(self, monkeypatch):
        from booking.config import ConfigurationError, settings

        monkeypatch.setattr(settings, "GOOGLE_SERVICE_ACCOUNT_JSON", "")

        with pytest.raises(ConfigurationError):
            SheetReader().service
