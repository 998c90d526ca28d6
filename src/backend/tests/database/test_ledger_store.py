from __future__ import annotations

from decimal import Decimal

import pytest

from src.backend.common.database.database import session_scope
from src.backend.common.database.ledger_store import (
    LedgerNotFoundError,
    LedgerStore,
    MirrorBindingConflictError,
)
from src.backend.common.models.ledger_models import ReceiptStatus, SyncStatus


def test_bind_mirror_is_set_once(session_factory, make_org) -> None:
    org_id = make_org()

    with session_scope(session_factory) as session:
        store = LedgerStore(session)
        org = store.get_organization(org_id)
        store.bind_mirror(org, "sheet-a")
        # Re-binding the same id is a no-op.
        store.bind_mirror(org, "sheet-a")
        with pytest.raises(MirrorBindingConflictError):
            store.bind_mirror(org, "sheet-b")

    with session_scope(session_factory) as session:
        assert LedgerStore(session).get_organization(org_id).mirror_id == "sheet-a"


def test_create_receipt_defaults(session_factory, make_org) -> None:
    org_id = make_org()

    with session_scope(session_factory) as session:
        receipt = LedgerStore(session).create_receipt(
            org_id=org_id, description="Parking", amount=Decimal("3.25")
        )
        receipt_id = receipt.id

    with session_scope(session_factory) as session:
        receipt = LedgerStore(session).get_receipt(receipt_id)
        assert receipt.status == ReceiptStatus.PENDING
        assert receipt.sync_status == SyncStatus.UNSYNCED
        assert receipt.mirror_position is None
        assert receipt.amount == Decimal("3.25")


def test_create_receipt_for_unknown_org(session_factory) -> None:
    with pytest.raises(LedgerNotFoundError):
        with session_scope(session_factory) as session:
            LedgerStore(session).create_receipt(
                org_id="missing", description="", amount=Decimal("1.00")
            )


def test_list_receipts_scoped_to_org_and_paged(session_factory, make_org, make_receipt) -> None:
    org_id = make_org()
    other_org = make_org("Other")
    for i in range(3):
        make_receipt(org_id, description=f"r{i}")
    make_receipt(other_org, description="elsewhere")

    with session_scope(session_factory) as session:
        store = LedgerStore(session)
        assert len(store.list_receipts(org_id)) == 3
        assert len(store.list_receipts(org_id, limit=2)) == 2
        assert len(store.list_receipts(org_id, limit=2, offset=2)) == 1
        assert store.list_receipts(org_id, status=ReceiptStatus.APPROVED) == []
