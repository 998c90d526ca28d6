"""Receipt positions within an organization's mirror.

Two rules:
- Positions come from the mirror itself (the row an append actually wrote),
  never from counting receipts in the primary store.
- Every mirror-mutating call for an organization runs under that
  organization's lock, so appends and updates reach the mirror in the same
  order positions are recorded.

The locks are per process. Separate worker processes rely on the outbox
lease for exclusivity and on mirror-assigned positions for uniqueness.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import update
from sqlalchemy.orm import Session

from src.backend.common.models.ledger_models import Receipt, SyncStatus, utc_now

logger = logging.getLogger(__name__)


class PositionConflictError(RuntimeError):
    """A receipt already occupies a different mirror position."""


class PositionTracker:
    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, org_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(org_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[org_id] = lock
            return lock

    @contextmanager
    def serialize(self, org_id: str) -> Iterator[None]:
        """Hold the organization's mirror lock for the duration of the block."""
        lock = self._lock_for(org_id)
        with lock:
            yield

    def record_position(self, receipt: Receipt, position: int) -> Receipt:
        """Store the mirror row of a persistent receipt, at most once.

        The write is a conditional UPDATE on `mirror_position IS NULL`, so a
        position committed by someone else since `receipt` was loaded is never
        overwritten. Recording the same position again is a no-op.
        """

        if position < 1:
            raise ValueError(f"Invalid mirror position: {position}")
        session = Session.object_session(receipt)
        if session is None:
            raise ValueError(f"Receipt {receipt.id} is not attached to a session")

        result = session.execute(
            update(Receipt)
            .where(Receipt.id == receipt.id, Receipt.mirror_position.is_(None))
            .values(mirror_position=position, sync_status=SyncStatus.SYNCED, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        session.refresh(receipt, attribute_names=["mirror_position", "sync_status", "updated_at"])

        if result.rowcount != 1 and receipt.mirror_position != position:
            raise PositionConflictError(
                f"Receipt {receipt.id} already mirrored at row {receipt.mirror_position}, "
                f"refusing row {position}"
            )
        logger.debug("Receipt %s mirrored at row %s", receipt.id, position)
        return receipt
