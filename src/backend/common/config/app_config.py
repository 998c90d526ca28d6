"""Application configuration.

`AppConfig` is built once at process start (`AppConfig.from_env()`) and passed
by reference to everything that needs it. Nothing in the backend reads
environment variables on its own after that point.
"""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field

from dotenv import dotenv_values, load_dotenv


def _load_env_files() -> None:
    load_dotenv(override=False)

    # Convenience: allow local runs with only `.env.example` filled.
    # Blank placeholders in `.env.example` must not shadow real values.
    example_path = os.path.abspath(".env.example")
    if os.path.exists(example_path):
        for k, v in (dotenv_values(example_path) or {}).items():
            if not k or v is None or v == "":
                continue
            if not os.environ.get(k):
                os.environ[k] = v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


@dataclass(frozen=True, slots=True)
class AppConfig:
    DATABASE_URL: str = "sqlite:///./receipts.db"

    GOOGLE_SA_FILE: str = "~/service-account.json"
    GOOGLE_HTTP_TIMEOUT_SECONDS: int = 30
    GOOGLE_NUM_RETRIES: int = 2
    MIRROR_TITLE_PREFIX: str = "Treasury Receipts - "
    MIRROR_SHEET_TITLE: str = "Receipts"

    AWS_S3_BUCKET: str | None = None
    AWS_REGION: str = "us-east-1"
    ATTACHMENT_URL_EXPIRY_SECONDS: int = 60 * 60 * 24 * 7

    SYNC_MAX_RETRIES: int = 10
    SYNC_BASE_DELAY_MS: int = 5000
    SYNC_BATCH_SIZE: int = 20
    SYNC_POLL_INTERVAL_SECONDS: int = 30
    SYNC_LEASE_SECONDS: int = 300
    SYNC_WORKER_ENABLED: bool = True
    SYNC_WORKER_ID: str = field(default_factory=_default_worker_id)

    BASIC_LOGGING_LEVEL: str = "INFO"
    PACKAGE_LOGGING_LEVEL: str = "WARNING"
    LOGGING_PACKAGES: str = "googleapiclient,botocore,urllib3,sqlalchemy.engine"

    @classmethod
    def from_env(cls) -> "AppConfig":
        _load_env_files()
        defaults = cls()

        return cls(
            DATABASE_URL=os.environ.get("DATABASE_URL") or defaults.DATABASE_URL,
            GOOGLE_SA_FILE=os.environ.get("GOOGLE_SA_FILE") or defaults.GOOGLE_SA_FILE,
            GOOGLE_HTTP_TIMEOUT_SECONDS=_env_int(
                "GOOGLE_HTTP_TIMEOUT_SECONDS", defaults.GOOGLE_HTTP_TIMEOUT_SECONDS
            ),
            GOOGLE_NUM_RETRIES=_env_int("GOOGLE_NUM_RETRIES", defaults.GOOGLE_NUM_RETRIES),
            MIRROR_TITLE_PREFIX=os.environ.get("MIRROR_TITLE_PREFIX")
            or defaults.MIRROR_TITLE_PREFIX,
            MIRROR_SHEET_TITLE=os.environ.get("MIRROR_SHEET_TITLE")
            or defaults.MIRROR_SHEET_TITLE,
            AWS_S3_BUCKET=os.environ.get("AWS_S3_BUCKET") or None,
            AWS_REGION=os.environ.get("AWS_REGION") or defaults.AWS_REGION,
            ATTACHMENT_URL_EXPIRY_SECONDS=_env_int(
                "ATTACHMENT_URL_EXPIRY_SECONDS", defaults.ATTACHMENT_URL_EXPIRY_SECONDS
            ),
            SYNC_MAX_RETRIES=_env_int("SYNC_MAX_RETRIES", defaults.SYNC_MAX_RETRIES),
            SYNC_BASE_DELAY_MS=_env_int("SYNC_BASE_DELAY_MS", defaults.SYNC_BASE_DELAY_MS),
            SYNC_BATCH_SIZE=_env_int("SYNC_BATCH_SIZE", defaults.SYNC_BATCH_SIZE),
            SYNC_POLL_INTERVAL_SECONDS=_env_int(
                "SYNC_POLL_INTERVAL_SECONDS", defaults.SYNC_POLL_INTERVAL_SECONDS
            ),
            SYNC_LEASE_SECONDS=_env_int("SYNC_LEASE_SECONDS", defaults.SYNC_LEASE_SECONDS),
            SYNC_WORKER_ENABLED=_env_bool("SYNC_WORKER_ENABLED", defaults.SYNC_WORKER_ENABLED),
            SYNC_WORKER_ID=os.environ.get("SYNC_WORKER_ID") or defaults.SYNC_WORKER_ID,
            BASIC_LOGGING_LEVEL=os.environ.get("BASIC_LOGGING_LEVEL")
            or defaults.BASIC_LOGGING_LEVEL,
            PACKAGE_LOGGING_LEVEL=os.environ.get("PACKAGE_LOGGING_LEVEL")
            or defaults.PACKAGE_LOGGING_LEVEL,
            LOGGING_PACKAGES=os.environ.get("LOGGING_PACKAGES") or defaults.LOGGING_PACKAGES,
        )

    @property
    def logging_packages(self) -> list[str]:
        return [pkg.strip() for pkg in self.LOGGING_PACKAGES.split(",") if pkg.strip()]
