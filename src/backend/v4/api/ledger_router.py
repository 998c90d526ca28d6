"""Organization and receipt endpoints.

Each write commits to the primary store first and only then hands the record
to the mirror sync service. A failed primary write fails the request; mirror
trouble never does (it becomes a sync outbox record instead).
"""

import logging
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from src.backend.common.database.database import session_scope
from src.backend.common.database.ledger_store import LedgerNotFoundError, LedgerStore
from src.backend.common.models.ledger_models import Organization, Receipt, ReceiptStatus
from src.backend.v4.api.sync_router import get_runtime
from src.backend.v4.config.settings import SyncRuntime

logger = logging.getLogger(__name__)

ledger_router = APIRouter(tags=["Ledger"])


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------


class OrganizationCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class ReceiptCreateRequest(BaseModel):
    description: str = Field(default="", max_length=2000)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    photo_key: str | None = None
    photo_url: str | None = None


class ReceiptStatusUpdateRequest(BaseModel):
    status: ReceiptStatus


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------


def _serialize_org(org: Organization) -> dict[str, Any]:
    return {
        "id": org.id,
        "name": org.name,
        "mirror_id": org.mirror_id,
        "created_at": org.created_at.isoformat() if org.created_at else None,
    }


def _serialize_receipt(receipt: Receipt) -> dict[str, Any]:
    return {
        "id": receipt.id,
        "org_id": receipt.org_id,
        "description": receipt.description,
        "amount": str(receipt.amount),
        "status": receipt.status.value,
        "sync_status": receipt.sync_status.value,
        "mirror_position": receipt.mirror_position,
        "photo_key": receipt.photo_key,
        "photo_url": receipt.photo_url,
        "created_at": receipt.created_at.isoformat() if receipt.created_at else None,
        "updated_at": receipt.updated_at.isoformat() if receipt.updated_at else None,
    }


def _load_org(runtime: SyncRuntime, org_id: str) -> dict[str, Any]:
    with session_scope(runtime.session_factory) as session:
        return _serialize_org(LedgerStore(session).get_organization(org_id))


def _load_receipt(runtime: SyncRuntime, receipt_id: str) -> dict[str, Any]:
    with session_scope(runtime.session_factory) as session:
        return _serialize_receipt(LedgerStore(session).get_receipt(receipt_id))


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@ledger_router.post("/orgs", status_code=201)
def create_organization(
    body: OrganizationCreateRequest,
    runtime: SyncRuntime = Depends(get_runtime),
):
    try:
        with session_scope(runtime.session_factory) as session:
            org_id = LedgerStore(session).create_organization(name=body.name.strip()).id
    except SQLAlchemyError as e:
        logger.error(f"Failed to create organization {body.name!r}: {e}")
        raise HTTPException(status_code=500, detail="Could not create organization")

    runtime.mirror_sync.on_organization_created(org_id)
    return {"org": _load_org(runtime, org_id)}


@ledger_router.get("/orgs/{org_id}")
def get_organization(org_id: str, runtime: SyncRuntime = Depends(get_runtime)):
    try:
        return {"org": _load_org(runtime, org_id)}
    except LedgerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@ledger_router.post("/orgs/{org_id}/receipts", status_code=201)
def create_receipt(
    org_id: str,
    body: ReceiptCreateRequest,
    runtime: SyncRuntime = Depends(get_runtime),
):
    try:
        with session_scope(runtime.session_factory) as session:
            receipt_id = (
                LedgerStore(session)
                .create_receipt(
                    org_id=org_id,
                    description=body.description,
                    amount=body.amount,
                    photo_key=body.photo_key,
                    photo_url=body.photo_url,
                )
                .id
            )
    except LedgerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SQLAlchemyError as e:
        logger.error(f"Failed to create receipt for org {org_id}: {e}")
        raise HTTPException(status_code=500, detail="Could not create receipt")

    runtime.mirror_sync.on_receipt_created(receipt_id)
    return {"receipt": _load_receipt(runtime, receipt_id)}


@ledger_router.get("/orgs/{org_id}/receipts")
def list_receipts(
    org_id: str,
    status: ReceiptStatus | None = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    runtime: SyncRuntime = Depends(get_runtime),
):
    try:
        with session_scope(runtime.session_factory) as session:
            store = LedgerStore(session)
            store.get_organization(org_id)
            receipts = [
                _serialize_receipt(r)
                for r in store.list_receipts(org_id, status=status, limit=limit, offset=offset)
            ]
    except LedgerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"receipts": receipts}


@ledger_router.patch("/receipts/{receipt_id}")
def update_receipt_status(
    receipt_id: str,
    body: ReceiptStatusUpdateRequest,
    runtime: SyncRuntime = Depends(get_runtime),
):
    try:
        with session_scope(runtime.session_factory) as session:
            store = LedgerStore(session)
            store.set_receipt_status(store.get_receipt(receipt_id), body.status)
    except LedgerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SQLAlchemyError as e:
        logger.error(f"Failed to update receipt {receipt_id}: {e}")
        raise HTTPException(status_code=500, detail="Could not update receipt")

    if body.status in (ReceiptStatus.APPROVED, ReceiptStatus.REJECTED):
        runtime.mirror_sync.on_receipt_status_changed(receipt_id)
    return {"receipt": _load_receipt(runtime, receipt_id)}
