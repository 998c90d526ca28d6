"""Enqueue path: best-effort synchronous mirroring with outbox fallback.

Called by request handlers *after* the receipt/organization write has
committed. Each method tries the mirror right away; if that fails, or the
mirror is not provisioned yet, the intent is written to the sync outbox for
the drain worker. None of these methods raise: mirror trouble must never fail
the caller's request.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import sessionmaker

from src.backend.common.database.database import session_scope
from src.backend.common.database.ledger_store import LedgerStore
from src.backend.common.models.ledger_models import (
    ReceiptStatus,
    SyncStatus,
    SyncType,
    utc_now,
)
from src.backend.v4.integrations.attachment_signer import AttachmentUrlSigner
from src.backend.v4.integrations.mirror_client import MirrorClient, MirrorNotProvisionedError
from src.backend.v4.use_cases.mirror_records import mirror_record_for_receipt, receipt_snapshot
from src.backend.v4.use_cases.position_tracker import PositionTracker
from src.backend.v4.use_cases.sync_outbox import RetryPolicy, SyncOutbox

logger = logging.getLogger(__name__)

_FINAL_STATUSES = {ReceiptStatus.APPROVED, ReceiptStatus.REJECTED}


class MirrorSyncService:
    def __init__(
        self,
        *,
        session_factory: sessionmaker,
        mirror: MirrorClient,
        positions: PositionTracker,
        signer: AttachmentUrlSigner | None = None,
        policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._mirror = mirror
        self._positions = positions
        self._signer = signer
        self._policy = policy or RetryPolicy()
        self._clock = clock

    def on_organization_created(self, org_id: str) -> bool:
        """Provision the organization's mirror, or defer it to the outbox."""
        try:
            with session_scope(self._session_factory) as session:
                store = LedgerStore(session)
                org = store.get_organization(org_id)
                if org.mirror_id:
                    return True

                if self._mirror.is_configured:
                    try:
                        with self._positions.serialize(org.id):
                            mirror_id = self._mirror.create(org.name)
                            store.bind_mirror(org, mirror_id)
                            session.commit()
                        return True
                    except Exception as e:
                        session.rollback()
                        logger.warning(
                            "Mirror creation failed for org %s, deferring to outbox: %s", org_id, e
                        )
                else:
                    logger.info("Mirror client not configured; deferring mirror for org %s", org_id)

                SyncOutbox(session, policy=self._policy).enqueue(
                    org_id=org_id,
                    sync_type=SyncType.CREATE_MIRROR,
                    now=self._clock(),
                )
        except Exception:
            logger.exception("Could not record create_mirror intent for org %s", org_id)
        return False

    def _org_id_for_receipt(self, receipt_id: str) -> str:
        with session_scope(self._session_factory) as session:
            return LedgerStore(session).get_receipt(receipt_id).org_id

    def on_receipt_created(self, receipt_id: str) -> bool:
        """Append the receipt to its organization's mirror, or enqueue the append."""
        try:
            org_id = self._org_id_for_receipt(receipt_id)
            with self._positions.serialize(org_id), session_scope(self._session_factory) as session:
                store = LedgerStore(session)
                receipt = store.get_receipt(receipt_id)
                if receipt.mirror_position is not None:
                    return True
                mirror_id = receipt.organization.mirror_id

                if mirror_id:
                    try:
                        record = mirror_record_for_receipt(receipt, self._signer)
                        position = self._mirror.append(mirror_id, record)
                        self._positions.record_position(receipt, position)
                        session.commit()
                        logger.info("Receipt %s mirrored at row %s", receipt_id, position)
                        return True
                    except Exception as e:
                        session.rollback()
                        logger.warning(
                            "Mirror append failed for receipt %s, enqueueing: %s", receipt_id, e
                        )
                    receipt = store.get_receipt(receipt_id)
                else:
                    logger.info("Org %s has no mirror yet; enqueueing receipt %s", org_id, receipt_id)

                SyncOutbox(session, policy=self._policy).enqueue(
                    org_id=org_id,
                    sync_type=SyncType.APPEND_RECORD,
                    receipt_id=receipt_id,
                    payload=receipt_snapshot(receipt),
                    now=self._clock(),
                )
                store.set_sync_status(receipt, SyncStatus.PENDING)
        except Exception:
            logger.exception("Could not record append intent for receipt %s", receipt_id)
        return False

    def on_receipt_status_changed(self, receipt_id: str) -> bool:
        """Push an approved/rejected receipt to its existing mirror row."""
        try:
            org_id = self._org_id_for_receipt(receipt_id)
            # An in-flight append commits its position before releasing the
            # org lock, so the receipt is read only once the lock is held.
            with self._positions.serialize(org_id), session_scope(self._session_factory) as session:
                store = LedgerStore(session)
                receipt = store.get_receipt(receipt_id)
                if receipt.status not in _FINAL_STATUSES:
                    return False

                position = receipt.mirror_position
                if position is None:
                    # The pending append reads current receipt state when it drains.
                    logger.debug("Receipt %s has no mirror row yet; nothing to update", receipt_id)
                    return False

                mirror_id = receipt.organization.mirror_id
                snapshot = receipt_snapshot(receipt)
                try:
                    if not mirror_id:
                        raise MirrorNotProvisionedError(f"Org {org_id} has no mirror binding")
                    self._mirror.update(
                        mirror_id, position, mirror_record_for_receipt(receipt, self._signer)
                    )
                    logger.info("Receipt %s updated at mirror row %s", receipt_id, position)
                    return True
                except Exception as e:
                    logger.warning(
                        "Mirror update failed for receipt %s (row %s), enqueueing: %s",
                        receipt_id,
                        position,
                        e,
                    )

                SyncOutbox(session, policy=self._policy).enqueue(
                    org_id=org_id,
                    sync_type=SyncType.UPDATE_RECORD,
                    receipt_id=receipt_id,
                    payload={"position": position, "receipt": snapshot},
                    now=self._clock(),
                )
        except Exception:
            logger.exception("Could not record update intent for receipt %s", receipt_id)
        return False
