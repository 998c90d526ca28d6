"""Primary store accessor for organizations and receipts.

Thin repository over a SQLAlchemy session. Callers own the transaction
(commit/rollback); these methods only stage changes and flush.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.backend.common.models.ledger_models import (
    Organization,
    Receipt,
    ReceiptStatus,
    SyncStatus,
    utc_now,
)

logger = logging.getLogger(__name__)


class LedgerNotFoundError(LookupError):
    pass


class MirrorBindingConflictError(RuntimeError):
    """An organization may hold only one mirror binding."""


class LedgerStore:
    def __init__(self, session: Session) -> None:
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    # -- organizations -----------------------------------------------------

    def create_organization(self, *, name: str, mirror_id: str | None = None) -> Organization:
        org = Organization(name=name, mirror_id=mirror_id)
        self._session.add(org)
        self._session.flush()
        return org

    def get_organization(self, org_id: str) -> Organization:
        org = self._session.get(Organization, org_id)
        if org is None:
            raise LedgerNotFoundError(f"Organization not found: {org_id}")
        return org

    def bind_mirror(self, org: Organization, mirror_id: str) -> Organization:
        if org.mirror_id == mirror_id:
            return org
        if org.mirror_id is not None:
            raise MirrorBindingConflictError(
                f"Organization {org.id} is already bound to mirror {org.mirror_id}"
            )
        org.mirror_id = mirror_id
        self._session.flush()
        logger.info("Organization %s bound to mirror %s", org.id, mirror_id)
        return org

    # -- receipts ----------------------------------------------------------

    def create_receipt(
        self,
        *,
        org_id: str,
        description: str,
        amount: Decimal,
        photo_url: str | None = None,
        photo_key: str | None = None,
    ) -> Receipt:
        self.get_organization(org_id)
        receipt = Receipt(
            org_id=org_id,
            description=description,
            amount=amount,
            status=ReceiptStatus.PENDING,
            sync_status=SyncStatus.UNSYNCED,
            photo_url=photo_url,
            photo_key=photo_key,
        )
        self._session.add(receipt)
        self._session.flush()
        return receipt

    def get_receipt(self, receipt_id: str) -> Receipt:
        receipt = self._session.get(Receipt, receipt_id)
        if receipt is None:
            raise LedgerNotFoundError(f"Receipt not found: {receipt_id}")
        return receipt

    def list_receipts(
        self,
        org_id: str,
        *,
        status: ReceiptStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Receipt]:
        stmt = select(Receipt).where(Receipt.org_id == org_id)
        if status is not None:
            stmt = stmt.where(Receipt.status == status)
        stmt = stmt.order_by(Receipt.created_at.desc()).limit(min(limit, 100)).offset(offset)
        return list(self._session.scalars(stmt))

    def set_receipt_status(self, receipt: Receipt, status: ReceiptStatus) -> Receipt:
        receipt.status = status
        receipt.updated_at = utc_now()
        self._session.flush()
        return receipt

    def set_sync_status(self, receipt: Receipt, sync_status: SyncStatus) -> Receipt:
        receipt.sync_status = sync_status
        self._session.flush()
        return receipt
