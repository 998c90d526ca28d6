"""Build mirror rows from receipts or from outbox payload snapshots."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from src.backend.common.models.ledger_models import Receipt
from src.backend.v4.integrations.attachment_signer import AttachmentUrlSigner
from src.backend.v4.integrations.mirror_client import MirrorRecord


def _enum_value(v: Any) -> Any:
    return getattr(v, "value", v)


def _iso(dt: datetime | None) -> str:
    return dt.isoformat() if dt is not None else ""


def receipt_snapshot(receipt: Receipt) -> dict[str, Any]:
    """JSON-safe copy of the receipt fields the mirror shows."""
    return {
        "id": receipt.id,
        "description": receipt.description or "",
        "amount": str(receipt.amount) if receipt.amount is not None else "",
        "status": _enum_value(receipt.status) or "pending",
        "photo_url": receipt.photo_url,
        "photo_key": receipt.photo_key,
        "created_at": _iso(receipt.created_at),
    }


def mirror_record_from_snapshot(
    snapshot: dict[str, Any],
    signer: AttachmentUrlSigner | None = None,
) -> MirrorRecord:
    photo_key = snapshot.get("photo_key")
    if photo_key and signer is not None:
        image_url = signer.sign(photo_key)
    else:
        image_url = snapshot.get("photo_url")

    amount = snapshot.get("amount")
    return MirrorRecord(
        date=snapshot.get("created_at") or "",
        description=snapshot.get("description") or "",
        amount="" if amount is None else str(amount),
        status=snapshot.get("status") or "pending",
        image_url=image_url or None,
    )


def mirror_record_for_receipt(
    receipt: Receipt,
    signer: AttachmentUrlSigner | None = None,
) -> MirrorRecord:
    return mirror_record_from_snapshot(receipt_snapshot(receipt), signer)
