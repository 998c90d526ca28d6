"""Primary store models: organizations, receipts and the sync outbox."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from src.backend.common.database.database import Base


def utc_now() -> datetime:
    """Naive UTC timestamp; every stored datetime uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class ReceiptStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SyncStatus(str, Enum):
    """Where a receipt stands relative to its organization's mirror."""

    UNSYNCED = "unsynced"
    PENDING = "pending"
    SYNCED = "synced"


class SyncType(str, Enum):
    CREATE_MIRROR = "create_mirror"
    APPEND_RECORD = "append_record"
    UPDATE_RECORD = "update_record"


def _enum_column(enum_cls: type[Enum]) -> SQLEnum:
    # Store the lowercase values, not the member names.
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    # Mirror binding: spreadsheet id, null until provisioned.
    mirror_id = Column(String(255), nullable=True, unique=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    receipts = relationship("Receipt", back_populates="organization")


class Receipt(Base):
    __tablename__ = "receipts"

    id = Column(String(36), primary_key=True, default=new_id)
    org_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(_enum_column(ReceiptStatus), nullable=False, default=ReceiptStatus.PENDING)
    sync_status = Column(_enum_column(SyncStatus), nullable=False, default=SyncStatus.UNSYNCED)
    # 1-based sheet row; set once, never moved.
    mirror_position = Column(Integer, nullable=True)
    photo_url = Column(Text, nullable=True)
    photo_key = Column(String(512), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    organization = relationship("Organization", back_populates="receipts")


class SyncRecord(Base):
    """Outbox entry: one pending mirror mutation."""

    __tablename__ = "sync_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    sync_type = Column(_enum_column(SyncType), nullable=False)
    receipt_id = Column(String(36), nullable=True, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    retry_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime, nullable=False, default=utc_now)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    # Lease held by the worker currently processing this record.
    claimed_by = Column(String(255), nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    __table_args__ = (Index("ix_sync_records_due", "retry_count", "next_attempt_at"),)
