"""Sync outbox API Router.

Operator endpoints for the mirror sync engine:
- inspect an organization's pending (and frozen) sync records
- run one drain pass right now
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError

from src.backend.common.database.database import session_scope
from src.backend.common.database.ledger_store import LedgerNotFoundError, LedgerStore
from src.backend.v4.config.settings import SyncRuntime
from src.backend.v4.use_cases.sync_outbox import SyncOutbox, serialize_sync_record

logger = logging.getLogger(__name__)

sync_router = APIRouter(tags=["Mirror Sync"])


def get_runtime(request: Request) -> SyncRuntime:
    runtime = getattr(request.app.state, "sync_runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Sync runtime not initialized")
    return runtime


@sync_router.get("/orgs/{org_id}/pending-syncs")
def list_pending_syncs(
    org_id: str,
    limit: int = Query(100, ge=1, le=500),
    runtime: SyncRuntime = Depends(get_runtime),
):
    """List the organization's outbox records, most recent first.

    Frozen records (retry ceiling reached) are included and flagged.
    """

    try:
        with session_scope(runtime.session_factory) as session:
            LedgerStore(session).get_organization(org_id)
            records = SyncOutbox(session, policy=runtime.policy).list_for_organization(
                org_id, limit=limit
            )
            pending = [serialize_sync_record(r, runtime.policy) for r in records]
    except LedgerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SQLAlchemyError as e:
        logger.error(f"Failed to list pending syncs for org {org_id}: {e}")
        raise HTTPException(status_code=503, detail="Database unavailable")

    return {"pending_syncs": pending, "max_retries": runtime.policy.max_retries}


@sync_router.post("/sync/force-run")
def force_sync_run(runtime: SyncRuntime = Depends(get_runtime)):
    """Run one reconciliation pass now and report how many records it handled.

    Runs the exact selection/processing/backoff logic of the periodic worker.
    Individual mirror failures are counted, not raised; only an unreachable
    database fails the request.
    """

    try:
        result = runtime.worker.run_once()
    except SQLAlchemyError as e:
        logger.error(f"Forced sync pass failed: {e}")
        raise HTTPException(status_code=503, detail="Database unavailable")

    logger.info(f"Forced sync pass completed: {result.to_dict()}")
    return result.to_dict()
