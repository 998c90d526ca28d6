"""Google Sheets mirror (service-account based).

Goals
- Provide a small, testable integration wrapper around the Sheets API.
- Keep all network calls here; keep range parsing deterministic and unit-testable.

One spreadsheet per organization, one `Receipts` tab, one row per receipt.
Row 1 is the header, so the first receipt lands on row 2.

This intentionally does not depend on FastAPI or the sync engine.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

from src.backend.common.config.app_config import AppConfig
from src.backend.v4.integrations.mirror_client import (
    MIRROR_HEADER,
    MirrorError,
    MirrorNotConfiguredError,
    MirrorRecord,
)

logger = logging.getLogger(__name__)

_SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
_A1_ROW_RE = re.compile(r"!\$?[A-Z]+\$?(\d+)")


def _col_to_a1(col_index_zero_based: int) -> str:
    """Convert 0-based column index to A1 column letters (0->A, 25->Z, 26->AA)."""

    if col_index_zero_based < 0:
        raise ValueError("col_index_zero_based must be >= 0")

    result = ""
    n = col_index_zero_based
    while True:
        n, rem = divmod(n, 26)
        result = chr(ord("A") + rem) + result
        if n == 0:
            break
        n -= 1

    return result


def _quote_sheet_title(title: str) -> str:
    return "'" + title.replace("'", "''") + "'"


def row_range(sheet_title: str, row_number: int, width: int = len(MIRROR_HEADER)) -> str:
    """A1 range covering one full mirror row, e.g. 'Receipts'!A5:E5."""

    if row_number < 1:
        raise ValueError("row_number must be >= 1")
    last_col = _col_to_a1(width - 1)
    return f"{_quote_sheet_title(sheet_title)}!A{row_number}:{last_col}{row_number}"


def column_range(sheet_title: str, width: int = len(MIRROR_HEADER)) -> str:
    return f"{_quote_sheet_title(sheet_title)}!A:{_col_to_a1(width - 1)}"


def parse_row_number(updated_range: str | None) -> int:
    """Extract the first row number from an A1 range like 'Receipts'!A7:E7.

    Sheets reports the exact range an append wrote to, which makes it the
    authoritative position of the new row.
    """

    match = _A1_ROW_RE.search(updated_range or "")
    if not match:
        raise MirrorError(f"Cannot determine appended row from range: {updated_range!r}")
    return int(match.group(1))


class SheetsMirrorClient:
    def __init__(
        self,
        *,
        service_account_path: str,
        title_prefix: str = "Treasury Receipts - ",
        sheet_title: str = "Receipts",
        timeout_seconds: int = 30,
        num_retries: int = 2,
    ) -> None:
        self._service_account_path = os.path.expanduser(service_account_path)
        self._title_prefix = title_prefix
        self._sheet_title = sheet_title
        self._timeout_seconds = timeout_seconds
        self._num_retries = num_retries

    @classmethod
    def from_config(cls, config: AppConfig) -> "SheetsMirrorClient":
        return cls(
            service_account_path=config.GOOGLE_SA_FILE,
            title_prefix=config.MIRROR_TITLE_PREFIX,
            sheet_title=config.MIRROR_SHEET_TITLE,
            timeout_seconds=config.GOOGLE_HTTP_TIMEOUT_SECONDS,
            num_retries=config.GOOGLE_NUM_RETRIES,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._service_account_path) and os.path.exists(self._service_account_path)

    @property
    def sheet_title(self) -> str:
        return self._sheet_title

    def _build_sheets_service(self) -> Any:
        # Lazy import so unit tests that only use the deterministic helpers
        # do not require Google client libs.
        import google_auth_httplib2
        import httplib2
        from google.oauth2 import service_account
        from googleapiclient.discovery import build

        if not self.is_configured:
            raise MirrorNotConfiguredError(
                f"Service account file not found: {self._service_account_path}"
            )

        with open(self._service_account_path, "r", encoding="utf-8") as f:
            sa = json.load(f)
        creds = service_account.Credentials.from_service_account_info(sa, scopes=[_SHEETS_SCOPE])
        http = google_auth_httplib2.AuthorizedHttp(
            creds, http=httplib2.Http(timeout=self._timeout_seconds)
        )

        return build("sheets", "v4", http=http, cache_discovery=False)

    def _execute(self, request: Any, *, op: str) -> dict[str, Any]:
        try:
            return request.execute(num_retries=self._num_retries) or {}
        except MirrorError:
            raise
        except Exception as e:
            status = getattr(getattr(e, "resp", None), "status", None)
            raise MirrorError(
                f"Sheets {op} failed: {e}",
                status_code=int(status) if status is not None else None,
            ) from e

    def _service(self) -> Any:
        try:
            return self._build_sheets_service()
        except MirrorError:
            raise
        except Exception as e:
            raise MirrorError(f"Could not build Sheets service: {e}") from e

    def create(self, tenant_name: str) -> str:
        sheets = self._service()
        body = {
            "properties": {"title": f"{self._title_prefix}{tenant_name}"},
            "sheets": [{"properties": {"title": self._sheet_title}}],
        }
        created = self._execute(
            sheets.spreadsheets().create(body=body, fields="spreadsheetId"),
            op="create",
        )
        spreadsheet_id = created.get("spreadsheetId")
        if not spreadsheet_id:
            raise MirrorError(f"Sheets create returned no spreadsheetId: {created}")

        self._execute(
            sheets.spreadsheets()
            .values()
            .update(
                spreadsheetId=spreadsheet_id,
                range=row_range(self._sheet_title, 1),
                valueInputOption="USER_ENTERED",
                body={"values": [list(MIRROR_HEADER)]},
            ),
            op="write header",
        )
        logger.info("Created mirror spreadsheet %s for %r", spreadsheet_id, tenant_name)
        return spreadsheet_id

    def append(self, mirror_id: str, record: MirrorRecord) -> int:
        sheets = self._service()
        resp = self._execute(
            sheets.spreadsheets()
            .values()
            .append(
                spreadsheetId=mirror_id,
                range=column_range(self._sheet_title),
                valueInputOption="USER_ENTERED",
                insertDataOption="INSERT_ROWS",
                includeValuesInResponse=False,
                body={"values": [record.to_row()]},
            ),
            op="append",
        )
        position = parse_row_number((resp.get("updates") or {}).get("updatedRange"))
        logger.debug("Appended row %s to mirror %s", position, mirror_id)
        return position

    def update(self, mirror_id: str, position: int, record: MirrorRecord) -> None:
        if position < 2:
            # Row 1 is the header.
            raise MirrorError(f"Refusing to overwrite header row (position={position})")
        sheets = self._service()
        self._execute(
            sheets.spreadsheets()
            .values()
            .update(
                spreadsheetId=mirror_id,
                range=row_range(self._sheet_title, position),
                valueInputOption="USER_ENTERED",
                body={"values": [record.to_row()]},
            ),
            op="update",
        )
        logger.debug("Updated row %s in mirror %s", position, mirror_id)
