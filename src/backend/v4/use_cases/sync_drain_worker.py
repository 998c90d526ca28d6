"""Drain worker: replays sync outbox records against the mirror.

A drain pass claims due records (oldest first), replays each one under its
organization's mirror lock, deletes it on success and schedules an
exponential-backoff retry on failure. `run_forever` repeats passes on a fixed
interval; `run_once` is the same pass on demand.

Delivery is at-least-once: a crash between a successful mirror call and the
record's deletion replays that mutation on a later pass.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable

from sqlalchemy.orm import Session, sessionmaker

from src.backend.common.database.database import session_scope
from src.backend.common.database.ledger_store import LedgerStore
from src.backend.common.models.ledger_models import (
    Organization,
    Receipt,
    SyncRecord,
    SyncType,
    utc_now,
)
from src.backend.v4.integrations.attachment_signer import AttachmentUrlSigner
from src.backend.v4.integrations.mirror_client import MirrorClient, MirrorNotProvisionedError
from src.backend.v4.use_cases.mirror_records import (
    mirror_record_for_receipt,
    mirror_record_from_snapshot,
)
from src.backend.v4.use_cases.position_tracker import PositionTracker
from src.backend.v4.use_cases.sync_outbox import RetryPolicy, SyncOutbox

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class DrainPassResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed_count": self.processed,
            "succeeded_count": self.succeeded,
            "failed_count": self.failed,
        }


class SyncDrainWorker:
    def __init__(
        self,
        *,
        session_factory: sessionmaker,
        mirror: MirrorClient,
        positions: PositionTracker,
        signer: AttachmentUrlSigner | None = None,
        policy: RetryPolicy | None = None,
        worker_id: str = "sync-worker",
        batch_size: int = 20,
        lease_seconds: int = 300,
        interval_seconds: float = 30.0,
        clock: Clock = utc_now,
        sleep: Sleep | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._mirror = mirror
        self._positions = positions
        self._signer = signer
        self._policy = policy or RetryPolicy()
        self._worker_id = worker_id
        self._batch_size = batch_size
        self._lease_seconds = lease_seconds
        self._interval_seconds = interval_seconds
        self._clock = clock
        self._sleep = sleep

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def run_once(self) -> DrainPassResult:
        """Run one drain pass over the currently due records."""

        with session_scope(self._session_factory) as session:
            claimed = SyncOutbox(session, policy=self._policy).claim_due(
                owner=self._worker_id,
                now=self._clock(),
                limit=self._batch_size,
                lease_seconds=self._lease_seconds,
            )

        succeeded = failed = 0
        for record_id in claimed:
            if self.process_record(record_id):
                succeeded += 1
            else:
                failed += 1

        result = DrainPassResult(processed=len(claimed), succeeded=succeeded, failed=failed)
        if claimed:
            logger.info(
                "Drain pass by %s: %s processed, %s succeeded, %s failed",
                self._worker_id,
                result.processed,
                result.succeeded,
                result.failed,
            )
        return result

    def process_record(self, record_id: int) -> bool:
        """Replay a single record. Returns True when it was completed and removed.

        Only a record this worker holds a live lease on is replayed; the lease
        is renewed first. A missing, frozen or no-longer-leased record is a
        no-op (False).
        """

        with session_scope(self._session_factory) as session:
            record = session.get(SyncRecord, record_id)
            if record is None:
                logger.debug("Sync %s no longer exists; skipping", record_id)
                return False

            org_id = record.org_id
            sync_type = record.sync_type
            outbox = SyncOutbox(session, policy=self._policy)
            try:
                with self._positions.serialize(org_id):
                    if not outbox.renew_lease(
                        record_id,
                        owner=self._worker_id,
                        now=self._clock(),
                        lease_seconds=self._lease_seconds,
                    ):
                        session.rollback()
                        logger.warning(
                            "Sync %s is not leased by %s (expired, reclaimed or frozen); skipping",
                            record_id,
                            self._worker_id,
                        )
                        return False
                    session.commit()

                    self._apply(session, record)
                    outbox.delete(record_id)
                    session.commit()
            except Exception as e:
                session.rollback()
                record = session.get(SyncRecord, record_id)
                if record is None:
                    return False
                outbox.mark_failed(record, now=self._clock(), error=f"{type(e).__name__}: {e}")
                return False

        logger.info("Sync %s (%s) for org %s completed", record_id, sync_type.value, org_id)
        return True

    # ------------------------------------------------------------------
    # Per-type replay
    # ------------------------------------------------------------------

    def _apply(self, session: Session, record: SyncRecord) -> None:
        org = session.get(Organization, record.org_id)
        if org is None:
            logger.warning(
                "Sync %s references missing org %s; dropping record", record.id, record.org_id
            )
            return

        if record.sync_type == SyncType.CREATE_MIRROR:
            self._create_mirror(session, org)
        elif record.sync_type == SyncType.APPEND_RECORD:
            self._append_record(session, org, record)
        elif record.sync_type == SyncType.UPDATE_RECORD:
            self._update_record(session, org, record)
        else:
            raise ValueError(f"Unknown sync type: {record.sync_type!r}")

    def _create_mirror(self, session: Session, org: Organization) -> None:
        if org.mirror_id:
            logger.info("Org %s already bound to mirror %s", org.id, org.mirror_id)
            return
        mirror_id = self._mirror.create(org.name)
        LedgerStore(session).bind_mirror(org, mirror_id)

    def _require_binding(self, org: Organization) -> str:
        if not org.mirror_id:
            raise MirrorNotProvisionedError(f"Org {org.id} has no mirror binding yet")
        return org.mirror_id

    def _append_record(self, session: Session, org: Organization, record: SyncRecord) -> None:
        mirror_id = self._require_binding(org)

        receipt = session.get(Receipt, record.receipt_id) if record.receipt_id else None
        if receipt is not None:
            if receipt.mirror_position is not None:
                logger.info(
                    "Receipt %s already mirrored at row %s; skipping duplicate append",
                    receipt.id,
                    receipt.mirror_position,
                )
                return
            position = self._mirror.append(
                mirror_id, mirror_record_for_receipt(receipt, self._signer)
            )
            self._positions.record_position(receipt, position)
            logger.info("Receipt %s mirrored at row %s", receipt.id, position)
            return

        snapshot = record.payload or {}
        if not snapshot:
            logger.warning(
                "Sync %s has neither a receipt nor a payload snapshot; dropping record", record.id
            )
            return
        position = self._mirror.append(
            mirror_id, mirror_record_from_snapshot(snapshot, self._signer)
        )
        logger.info("Snapshot from sync %s mirrored at row %s", record.id, position)

    def _update_record(self, session: Session, org: Organization, record: SyncRecord) -> None:
        mirror_id = self._require_binding(org)
        payload = record.payload or {}

        receipt = session.get(Receipt, record.receipt_id) if record.receipt_id else None
        position = payload.get("position")
        if position is None and receipt is not None:
            position = receipt.mirror_position
        if position is None:
            raise ValueError(f"Sync {record.id} has no target position")

        if receipt is not None:
            mirror_record = mirror_record_for_receipt(receipt, self._signer)
        else:
            mirror_record = mirror_record_from_snapshot(payload.get("receipt") or {}, self._signer)
        self._mirror.update(mirror_id, int(position), mirror_record)

    # ------------------------------------------------------------------
    # Periodic loop
    # ------------------------------------------------------------------

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """Run drain passes every `interval_seconds` until stopped or cancelled.

        Cancelling mid-pass is safe: the outbox and primary store hold all the
        state, so an interrupted record becomes eligible again once its lease
        expires.
        """

        stop_event = stop_event or asyncio.Event()
        logger.info(
            "Sync drain worker %s started (interval=%ss, batch=%s)",
            self._worker_id,
            self._interval_seconds,
            self._batch_size,
        )
        try:
            while not stop_event.is_set():
                try:
                    await asyncio.to_thread(self.run_once)
                except Exception:
                    logger.exception("Drain pass failed")
                if stop_event.is_set():
                    break
                await self._pause(stop_event)
        finally:
            logger.info("Sync drain worker %s stopped", self._worker_id)

    async def _pause(self, stop_event: asyncio.Event) -> None:
        """Sleep for one interval, waking early when `stop_event` is set."""

        sleep = self._sleep or asyncio.sleep
        sleeper = asyncio.ensure_future(sleep(self._interval_seconds))
        stopper = asyncio.ensure_future(stop_event.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, stopper):
                task.cancel()
            await asyncio.gather(sleeper, stopper, return_exceptions=True)
