"""
Runtime wiring for the receipt mirror sync engine.

`build_runtime` turns an `AppConfig` into the concrete collaborators (database
engine, mirror client, signer, outbox policy, enqueue service, drain worker).
It is called once per process; the result is passed around explicitly instead
of living in module globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from src.backend.common.config.app_config import AppConfig
from src.backend.common.database.database import create_db_engine, create_session_factory
from src.backend.common.models.ledger_models import utc_now
from src.backend.v4.integrations.attachment_signer import AttachmentUrlSigner, S3AttachmentSigner
from src.backend.v4.integrations.google_sheets_mirror import SheetsMirrorClient
from src.backend.v4.integrations.mirror_client import MirrorClient
from src.backend.v4.use_cases.mirror_sync import MirrorSyncService
from src.backend.v4.use_cases.position_tracker import PositionTracker
from src.backend.v4.use_cases.sync_drain_worker import SyncDrainWorker
from src.backend.v4.use_cases.sync_outbox import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SyncRuntime:
    """Everything the API layer and the worker process need, built once."""

    config: AppConfig
    engine: Engine
    session_factory: sessionmaker
    mirror: MirrorClient
    signer: Optional[AttachmentUrlSigner]
    policy: RetryPolicy
    positions: PositionTracker
    mirror_sync: MirrorSyncService
    worker: SyncDrainWorker


def build_runtime(
    config: AppConfig,
    *,
    engine: Optional[Engine] = None,
    mirror: Optional[MirrorClient] = None,
    signer: Optional[AttachmentUrlSigner] = None,
    clock: Callable[[], datetime] = utc_now,
) -> SyncRuntime:
    """Build the sync runtime from config; any collaborator can be overridden."""

    engine = engine or create_db_engine(config.DATABASE_URL)
    session_factory = create_session_factory(engine)
    mirror = mirror or SheetsMirrorClient.from_config(config)
    if signer is None:
        signer = S3AttachmentSigner.from_config(config)

    policy = RetryPolicy(
        max_retries=config.SYNC_MAX_RETRIES,
        base_delay_ms=config.SYNC_BASE_DELAY_MS,
    )
    # Shared so request handlers and the worker serialize on the same locks.
    positions = PositionTracker()

    mirror_sync = MirrorSyncService(
        session_factory=session_factory,
        mirror=mirror,
        positions=positions,
        signer=signer,
        policy=policy,
        clock=clock,
    )
    worker = SyncDrainWorker(
        session_factory=session_factory,
        mirror=mirror,
        positions=positions,
        signer=signer,
        policy=policy,
        worker_id=config.SYNC_WORKER_ID,
        batch_size=config.SYNC_BATCH_SIZE,
        lease_seconds=config.SYNC_LEASE_SECONDS,
        interval_seconds=config.SYNC_POLL_INTERVAL_SECONDS,
        clock=clock,
    )

    logger.info(
        "🔧 Sync runtime ready - worker=%s, mirror configured=%s, max_retries=%s, base_delay_ms=%s",
        config.SYNC_WORKER_ID,
        mirror.is_configured,
        policy.max_retries,
        policy.base_delay_ms,
    )

    return SyncRuntime(
        config=config,
        engine=engine,
        session_factory=session_factory,
        mirror=mirror,
        signer=signer,
        policy=policy,
        positions=positions,
        mirror_sync=mirror_sync,
        worker=worker,
    )
