"""Sync outbox: durable queue of pending mirror mutations.

Records are created by the enqueue path when an immediate mirror call fails,
claimed and retried by the drain worker, and deleted only after a confirmed
successful replay. Records that hit the retry ceiling stay in the table,
frozen, until an operator deals with them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from src.backend.common.models.ledger_models import SyncRecord, SyncType

logger = logging.getLogger(__name__)

_MAX_ERROR_CHARS = 2000


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = 10
    base_delay_ms: int = 5000

    def delay_after(self, retry_count: int) -> timedelta:
        """Backoff before the next attempt, given the post-failure retry_count.

        retry_count=1 -> base, 2 -> 2*base, 3 -> 4*base, ...
        """
        if retry_count < 1:
            return timedelta(0)
        return timedelta(milliseconds=self.base_delay_ms * (2 ** (retry_count - 1)))

    def is_frozen(self, record: SyncRecord) -> bool:
        return record.retry_count >= self.max_retries


class SyncOutbox:
    def __init__(self, session: Session, *, policy: RetryPolicy | None = None) -> None:
        self._session = session
        self._policy = policy or RetryPolicy()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def enqueue(
        self,
        *,
        org_id: str,
        sync_type: SyncType,
        now: datetime,
        receipt_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> SyncRecord:
        record = SyncRecord(
            org_id=org_id,
            sync_type=sync_type,
            receipt_id=receipt_id,
            payload=payload or {},
            retry_count=0,
            next_attempt_at=now,
            created_at=now,
        )
        self._session.add(record)
        self._session.flush()
        logger.info(
            "Enqueued %s sync %s for org %s (receipt=%s)",
            sync_type.value,
            record.id,
            org_id,
            receipt_id,
        )
        return record

    def get(self, record_id: int) -> SyncRecord | None:
        return self._session.get(SyncRecord, record_id)

    def _due_clause(self, now: datetime):
        return and_(
            SyncRecord.retry_count < self._policy.max_retries,
            SyncRecord.next_attempt_at <= now,
            or_(SyncRecord.claimed_by.is_(None), SyncRecord.lease_expires_at <= now),
        )

    def select_due(self, *, now: datetime, limit: int = 20) -> list[SyncRecord]:
        stmt = (
            select(SyncRecord)
            .where(self._due_clause(now))
            .order_by(SyncRecord.created_at.asc(), SyncRecord.id.asc())
            .limit(limit)
        )
        return list(self._session.scalars(stmt))

    def claim_due(
        self,
        *,
        owner: str,
        now: datetime,
        limit: int = 20,
        lease_seconds: int = 300,
    ) -> list[int]:
        """Lease up to `limit` due records to `owner`; returns claimed ids in order.

        The conditional UPDATE only succeeds if nobody else holds a live lease,
        so concurrent workers never both claim the same record.
        """

        lease_expires_at = now + timedelta(seconds=lease_seconds)
        claimed: list[int] = []
        for record_id in [r.id for r in self.select_due(now=now, limit=limit)]:
            result = self._session.execute(
                update(SyncRecord)
                .where(SyncRecord.id == record_id, self._due_clause(now))
                .values(claimed_by=owner, lease_expires_at=lease_expires_at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                claimed.append(record_id)
        return claimed

    def renew_lease(
        self,
        record_id: int,
        *,
        owner: str,
        now: datetime,
        lease_seconds: int = 300,
    ) -> bool:
        """Extend `owner`'s live lease on a record; False if the lease is gone.

        Fails once the lease has expired (another worker may have claimed the
        record since) or the record is frozen.
        """

        result = self._session.execute(
            update(SyncRecord)
            .where(
                SyncRecord.id == record_id,
                SyncRecord.claimed_by == owner,
                SyncRecord.lease_expires_at > now,
                SyncRecord.retry_count < self._policy.max_retries,
            )
            .values(lease_expires_at=now + timedelta(seconds=lease_seconds))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def mark_failed(self, record: SyncRecord, *, now: datetime, error: str) -> SyncRecord:
        record.retry_count = (record.retry_count or 0) + 1
        record.next_attempt_at = now + self._policy.delay_after(record.retry_count)
        record.claimed_by = None
        record.lease_expires_at = None
        record.last_error = (error or "")[:_MAX_ERROR_CHARS]
        self._session.flush()

        if self._policy.is_frozen(record):
            logger.warning(
                "Sync %s (%s, org %s) reached %s retries and is frozen for manual inspection: %s",
                record.id,
                record.sync_type.value,
                record.org_id,
                record.retry_count,
                record.last_error,
            )
        else:
            logger.warning(
                "Sync %s (%s) failed (retry %s/%s), next attempt at %s: %s",
                record.id,
                record.sync_type.value,
                record.retry_count,
                self._policy.max_retries,
                record.next_attempt_at.isoformat(),
                record.last_error,
            )
        return record

    def delete(self, record_id: int) -> bool:
        record = self.get(record_id)
        if record is None:
            return False
        self._session.delete(record)
        self._session.flush()
        return True

    def list_for_organization(self, org_id: str, *, limit: int = 100) -> list[SyncRecord]:
        stmt = (
            select(SyncRecord)
            .where(SyncRecord.org_id == org_id)
            .order_by(SyncRecord.created_at.desc(), SyncRecord.id.desc())
            .limit(limit)
        )
        return list(self._session.scalars(stmt))


def serialize_sync_record(record: SyncRecord, policy: RetryPolicy) -> dict[str, Any]:
    return {
        "id": record.id,
        "org_id": record.org_id,
        "sync_type": record.sync_type.value,
        "receipt_id": record.receipt_id,
        "payload": record.payload or {},
        "retry_count": record.retry_count,
        "next_attempt_at": record.next_attempt_at.isoformat() if record.next_attempt_at else None,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "claimed_by": record.claimed_by,
        "lease_expires_at": (
            record.lease_expires_at.isoformat() if record.lease_expires_at else None
        ),
        "last_error": record.last_error,
        "is_frozen": policy.is_frozen(record),
    }
