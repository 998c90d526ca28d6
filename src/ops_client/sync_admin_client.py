"""Operator client for the mirror sync admin endpoints.

Small async helpers used by local scripts and on-call tooling to inspect the
outbox and trigger a drain pass on a running backend. Every call returns an
envelope (`ok`, `status_code`, `request`, and `response` or `error`) instead
of raising on HTTP errors.

It does NOT import the backend package.
"""

from __future__ import annotations

import os
from typing import Any

import httpx


def _base_url(backend_base_url: str | None) -> str:
    return (
        backend_base_url
        or os.environ.get("SYNC_ADMIN_BACKEND_BASE_URL")
        or "http://127.0.0.1:8000/api/v4"
    ).rstrip("/")


def _timeout() -> float:
    return float(os.environ.get("SYNC_ADMIN_HTTP_TIMEOUT_SECONDS", "60"))


def _envelope(resp: httpx.Response, request: dict[str, Any]) -> dict[str, Any]:
    if resp.status_code >= 400:
        return {
            "ok": False,
            "status_code": resp.status_code,
            "error": resp.text,
            "request": request,
        }

    return {
        "ok": True,
        "status_code": resp.status_code,
        "request": request,
        "response": resp.json(),
    }


async def _send(
    method: str,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    client: httpx.AsyncClient | None = None,
) -> httpx.Response:
    if client is not None:
        return await client.request(method, url, params=params)
    async with httpx.AsyncClient(timeout=_timeout()) as owned:
        return await owned.request(method, url, params=params)


async def call_force_sync_run(
    *,
    backend_base_url: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """Ask the backend to run one drain pass now."""

    url = f"{_base_url(backend_base_url)}/sync/force-run"
    resp = await _send("POST", url, client=client)
    return _envelope(resp, {"url": url, "method": "POST"})


async def fetch_pending_syncs(
    org_id: str,
    *,
    limit: int | None = None,
    backend_base_url: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """List an organization's outbox records (frozen ones included)."""

    if not org_id:
        raise ValueError("org_id is required")

    url = f"{_base_url(backend_base_url)}/orgs/{org_id}/pending-syncs"
    params = {"limit": limit} if limit is not None else None
    resp = await _send("GET", url, params=params, client=client)
    return _envelope(resp, {"url": url, "method": "GET", "params": params or {}})
