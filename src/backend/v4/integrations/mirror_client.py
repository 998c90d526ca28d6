"""Mirror client contract.

The mirror is the external, human-editable ledger receipts are copied into.
The sync engine only depends on this protocol; the Google Sheets
implementation lives in `google_sheets_mirror`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

MIRROR_HEADER: tuple[str, ...] = ("Date", "Description", "Amount", "Status", "Image")


class MirrorError(RuntimeError):
    """Any failed mirror call. The drain worker retries all of them."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MirrorNotConfiguredError(MirrorError):
    """No credentials available to reach the mirror service."""


class MirrorNotProvisionedError(MirrorError):
    """The organization has no mirror binding yet."""


@dataclass(frozen=True, slots=True)
class MirrorRecord:
    date: str
    description: str
    amount: str
    status: str
    image_url: str | None = None

    def to_row(self) -> list[str]:
        # Presigned URLs expire; the formula is rewritten on every update.
        image = f'=IMAGE("{self.image_url}")' if self.image_url else ""
        return [self.date, self.description, self.amount, self.status, image]


class MirrorClient(Protocol):
    @property
    def is_configured(self) -> bool: ...

    def create(self, tenant_name: str) -> str:
        """Provision a mirror for a tenant and return its id."""
        ...

    def append(self, mirror_id: str, record: MirrorRecord) -> int:
        """Append a record and return the position the mirror assigned to it."""
        ...

    def update(self, mirror_id: str, position: int, record: MirrorRecord) -> None:
        ...
