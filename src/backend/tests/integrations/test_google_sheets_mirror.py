from __future__ import annotations

from types import SimpleNamespace

import pytest

from src.backend.v4.integrations.google_sheets_mirror import (
    SheetsMirrorClient,
    _col_to_a1,
    column_range,
    parse_row_number,
    row_range,
)
from src.backend.v4.integrations.mirror_client import (
    MirrorError,
    MirrorNotConfiguredError,
    MirrorRecord,
)


class _FakeRequest:
    def __init__(self, log: list, op: str, kwargs: dict, response=None, error=None) -> None:
        self._log = log
        self._op = op
        self._kwargs = kwargs
        self._response = response
        self._error = error

    def execute(self, num_retries=0):
        self._log.append((self._op, self._kwargs, num_retries))
        if self._error is not None:
            raise self._error
        return self._response


class _FakeValues:
    def __init__(self, service: "_FakeSheetsService") -> None:
        self._service = service

    def append(self, **kwargs):
        return self._service.request("values.append", kwargs)

    def update(self, **kwargs):
        return self._service.request("values.update", kwargs)


class _FakeSpreadsheets:
    def __init__(self, service: "_FakeSheetsService") -> None:
        self._service = service

    def create(self, **kwargs):
        return self._service.request("create", kwargs)

    def values(self):
        return _FakeValues(self._service)


class _FakeSheetsService:
    def __init__(self, responses: dict | None = None, errors: dict | None = None) -> None:
        self.log: list = []
        self._responses = responses or {}
        self._errors = errors or {}

    def spreadsheets(self):
        return _FakeSpreadsheets(self)

    def request(self, op: str, kwargs: dict) -> _FakeRequest:
        return _FakeRequest(
            self.log, op, kwargs, response=self._responses.get(op), error=self._errors.get(op)
        )


def _client(monkeypatch, service: _FakeSheetsService) -> SheetsMirrorClient:
    client = SheetsMirrorClient(service_account_path="/nonexistent/sa.json", num_retries=3)
    monkeypatch.setattr(client, "_build_sheets_service", lambda: service)
    return client


def test_col_to_a1() -> None:
    assert _col_to_a1(0) == "A"
    assert _col_to_a1(4) == "E"
    assert _col_to_a1(25) == "Z"
    assert _col_to_a1(26) == "AA"
    with pytest.raises(ValueError):
        _col_to_a1(-1)


def test_row_and_column_ranges_quote_sheet_title() -> None:
    assert row_range("Receipts", 5) == "'Receipts'!A5:E5"
    assert row_range("Bob's Sheet", 2) == "'Bob''s Sheet'!A2:E2"
    assert column_range("Receipts") == "'Receipts'!A:E"
    with pytest.raises(ValueError):
        row_range("Receipts", 0)


@pytest.mark.parametrize(
    "updated_range, expected",
    [
        ("'Receipts'!A7:E7", 7),
        ("Receipts!A12:E12", 12),
        ("'Receipts'!$A$3:$E$3", 3),
    ],
)
def test_parse_row_number(updated_range: str, expected: int) -> None:
    assert parse_row_number(updated_range) == expected


def test_parse_row_number_rejects_unparseable_range() -> None:
    with pytest.raises(MirrorError):
        parse_row_number("Receipts")
    with pytest.raises(MirrorError):
        parse_row_number(None)


def test_mirror_record_row_embeds_image_formula() -> None:
    with_image = MirrorRecord("2025-01-01", "Lunch", "12.50", "approved", "https://x/y.jpg")
    assert with_image.to_row() == [
        "2025-01-01",
        "Lunch",
        "12.50",
        "approved",
        '=IMAGE("https://x/y.jpg")',
    ]
    assert MirrorRecord("2025-01-01", "Lunch", "12.50", "pending").to_row()[-1] == ""


def test_append_returns_row_from_updated_range(monkeypatch) -> None:
    service = _FakeSheetsService(
        responses={"values.append": {"updates": {"updatedRange": "'Receipts'!A4:E4"}}}
    )
    client = _client(monkeypatch, service)

    position = client.append("sheet-1", MirrorRecord("2025-01-01", "Taxi", "30.00", "pending"))

    assert position == 4
    op, kwargs, num_retries = service.log[0]
    assert op == "values.append"
    assert kwargs["spreadsheetId"] == "sheet-1"
    assert kwargs["range"] == "'Receipts'!A:E"
    assert kwargs["valueInputOption"] == "USER_ENTERED"
    assert kwargs["insertDataOption"] == "INSERT_ROWS"
    assert kwargs["body"] == {"values": [["2025-01-01", "Taxi", "30.00", "pending", ""]]}
    assert num_retries == 3


def test_append_without_updated_range_is_an_error(monkeypatch) -> None:
    client = _client(monkeypatch, _FakeSheetsService(responses={"values.append": {}}))

    with pytest.raises(MirrorError):
        client.append("sheet-1", MirrorRecord("2025-01-01", "Taxi", "30.00", "pending"))


def test_update_writes_exact_row(monkeypatch) -> None:
    service = _FakeSheetsService(responses={"values.update": {}})
    client = _client(monkeypatch, service)

    client.update("sheet-1", 6, MirrorRecord("2025-01-01", "Taxi", "30.00", "approved"))

    op, kwargs, _ = service.log[0]
    assert op == "values.update"
    assert kwargs["range"] == "'Receipts'!A6:E6"
    assert kwargs["body"]["values"][0][3] == "approved"


def test_update_refuses_header_row(monkeypatch) -> None:
    service = _FakeSheetsService()
    client = _client(monkeypatch, service)

    with pytest.raises(MirrorError):
        client.update("sheet-1", 1, MirrorRecord("2025-01-01", "Taxi", "30.00", "approved"))
    assert service.log == []


def test_create_names_spreadsheet_and_writes_header(monkeypatch) -> None:
    service = _FakeSheetsService(
        responses={"create": {"spreadsheetId": "new-sheet"}, "values.update": {}}
    )
    client = _client(monkeypatch, service)

    mirror_id = client.create("Acme")

    assert mirror_id == "new-sheet"
    create_op, create_kwargs, _ = service.log[0]
    assert create_op == "create"
    assert create_kwargs["body"]["properties"]["title"] == "Treasury Receipts - Acme"
    assert create_kwargs["body"]["sheets"][0]["properties"]["title"] == "Receipts"
    header_op, header_kwargs, _ = service.log[1]
    assert header_op == "values.update"
    assert header_kwargs["range"] == "'Receipts'!A1:E1"
    assert header_kwargs["body"] == {
        "values": [["Date", "Description", "Amount", "Status", "Image"]]
    }


def test_api_errors_are_wrapped_with_status(monkeypatch) -> None:
    http_error = RuntimeError("rate limited")
    http_error.resp = SimpleNamespace(status=429)
    client = _client(monkeypatch, _FakeSheetsService(errors={"values.append": http_error}))

    with pytest.raises(MirrorError) as exc_info:
        client.append("sheet-1", MirrorRecord("2025-01-01", "Taxi", "30.00", "pending"))

    assert exc_info.value.status_code == 429
    assert exc_info.value.__cause__ is http_error


def test_missing_service_account_is_not_configured(tmp_path) -> None:
    client = SheetsMirrorClient(service_account_path=str(tmp_path / "missing.json"))
    assert client.is_configured is False

    sa_path = tmp_path / "sa.json"
    sa_path.write_text("{}")
    assert SheetsMirrorClient(service_account_path=str(sa_path)).is_configured is True


def test_build_failure_surfaces_as_mirror_error(monkeypatch) -> None:
    client = SheetsMirrorClient(service_account_path="/nonexistent/sa.json")

    def boom():
        raise MirrorNotConfiguredError("Service account file not found")

    monkeypatch.setattr(client, "_build_sheets_service", boom)
    with pytest.raises(MirrorNotConfiguredError):
        client.create("Acme")
