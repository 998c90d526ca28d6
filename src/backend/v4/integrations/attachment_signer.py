"""Attachment URL signing for receipt photos stored in S3.

Mirror rows embed the receipt photo as an `=IMAGE(...)` formula. Stored
presigned URLs expire, so a fresh one is signed every time a row is built.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import boto3

from src.backend.common.config.app_config import AppConfig

logger = logging.getLogger(__name__)


class AttachmentUrlSigner(Protocol):
    def sign(self, object_key: str) -> str: ...


class S3AttachmentSigner:
    def __init__(
        self,
        *,
        bucket: str,
        region_name: str = "us-east-1",
        expires_in_seconds: int = 60 * 60 * 24 * 7,
        client: Any | None = None,
    ) -> None:
        if not bucket:
            raise ValueError("bucket is required")
        self._bucket = bucket
        self._expires_in_seconds = expires_in_seconds
        self._client = client or boto3.client("s3", region_name=region_name)

    @classmethod
    def from_config(cls, config: AppConfig) -> "S3AttachmentSigner | None":
        if not config.AWS_S3_BUCKET:
            logger.info("AWS_S3_BUCKET not set; mirror rows will use stored photo URLs")
            return None
        return cls(
            bucket=config.AWS_S3_BUCKET,
            region_name=config.AWS_REGION,
            expires_in_seconds=config.ATTACHMENT_URL_EXPIRY_SECONDS,
        )

    def sign(self, object_key: str) -> str:
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self._bucket, "Key": object_key},
            ExpiresIn=self._expires_in_seconds,
        )
