"""Shared fixtures for backend tests: a throwaway SQLite store, a fake mirror
and a manual clock."""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from src.backend.common.database.database import (
    create_db_engine,
    create_session_factory,
    init_db,
    session_scope,
)
from src.backend.common.database.ledger_store import LedgerStore
from src.backend.v4.integrations.mirror_client import MirrorError, MirrorRecord
from src.backend.v4.use_cases.position_tracker import PositionTracker
from src.backend.v4.use_cases.sync_outbox import RetryPolicy


class ManualClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeMirror:
    """In-memory mirror. Row 1 of every sheet is the header."""

    def __init__(self, *, configured: bool = True) -> None:
        self.configured = configured
        self.sheets: dict[str, list[MirrorRecord]] = {}
        self.calls: list[tuple] = []
        self.fail_create = 0
        self.fail_append = 0
        self.fail_update = 0
        # Called as before_append(mirror_id, record) ahead of each append.
        self.before_append = None
        self._next_id = 1

    @property
    def is_configured(self) -> bool:
        return self.configured

    def _maybe_fail(self, attr: str, op: str) -> None:
        remaining = getattr(self, attr)
        if remaining:
            setattr(self, attr, remaining - 1)
            raise MirrorError(f"{op} unavailable", status_code=503)

    def create(self, tenant_name: str) -> str:
        self.calls.append(("create", tenant_name))
        self._maybe_fail("fail_create", "create")
        mirror_id = f"sheet-{self._next_id}"
        self._next_id += 1
        self.sheets[mirror_id] = []
        return mirror_id

    def append(self, mirror_id: str, record: MirrorRecord) -> int:
        self.calls.append(("append", mirror_id, record))
        self._maybe_fail("fail_append", "append")
        if self.before_append is not None:
            self.before_append(mirror_id, record)
        rows = self.sheets.setdefault(mirror_id, [])
        rows.append(record)
        return len(rows) + 1

    def update(self, mirror_id: str, position: int, record: MirrorRecord) -> None:
        self.calls.append(("update", mirror_id, position, record))
        self._maybe_fail("fail_update", "update")
        rows = self.sheets[mirror_id]
        rows[position - 2] = record

    def ops(self) -> list[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def engine(tmp_path):
    eng = create_db_engine(f"sqlite:///{tmp_path / 'receipts.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(datetime(2025, 1, 1, 12, 0, 0))


@pytest.fixture
def mirror() -> FakeMirror:
    return FakeMirror()


@pytest.fixture
def positions() -> PositionTracker:
    return PositionTracker()


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(max_retries=10, base_delay_ms=5000)


@pytest.fixture
def make_org(session_factory):
    def _make(name: str = "Acme", mirror_id: str | None = None) -> str:
        with session_scope(session_factory) as session:
            return LedgerStore(session).create_organization(name=name, mirror_id=mirror_id).id

    return _make


@pytest.fixture
def make_receipt(session_factory):
    def _make(org_id: str, description: str = "Coffee", amount: str = "4.50", **kwargs) -> str:
        with session_scope(session_factory) as session:
            return (
                LedgerStore(session)
                .create_receipt(
                    org_id=org_id, description=description, amount=Decimal(amount), **kwargs
                )
                .id
            )

    return _make
