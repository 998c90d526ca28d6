from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from src.ops_client.sync_admin_client import call_force_sync_run, fetch_pending_syncs


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_call_force_sync_run_posts_and_wraps_response() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        return httpx.Response(
            200, json={"processed_count": 2, "succeeded_count": 1, "failed_count": 1}
        )

    async def run():
        async with _client(handler) as client:
            return await call_force_sync_run(
                backend_base_url="http://backend.test/api/v4/", client=client
            )

    res = asyncio.run(run())

    assert seen == {"method": "POST", "url": "http://backend.test/api/v4/sync/force-run"}
    assert res["ok"] is True
    assert res["status_code"] == 200
    assert res["response"]["processed_count"] == 2
    assert res["request"]["url"] == "http://backend.test/api/v4/sync/force-run"


def test_fetch_pending_syncs_passes_limit() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"pending_syncs": [], "max_retries": 10})

    async def run():
        async with _client(handler) as client:
            return await fetch_pending_syncs(
                "org-1", limit=5, backend_base_url="http://backend.test/api/v4", client=client
            )

    res = asyncio.run(run())

    assert seen["url"] == "http://backend.test/api/v4/orgs/org-1/pending-syncs?limit=5"
    assert res["ok"] is True
    assert res["response"] == {"pending_syncs": [], "max_retries": 10}
    assert res["request"]["params"] == {"limit": 5}


def test_error_status_returns_envelope_instead_of_raising() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text=json.dumps({"detail": "Organization not found: nope"}))

    async def run():
        async with _client(handler) as client:
            return await fetch_pending_syncs(
                "nope", backend_base_url="http://backend.test/api/v4", client=client
            )

    res = asyncio.run(run())

    assert res["ok"] is False
    assert res["status_code"] == 404
    assert "Organization not found" in res["error"]
    assert "response" not in res


def test_base_url_falls_back_to_env(monkeypatch) -> None:
    monkeypatch.setenv("SYNC_ADMIN_BACKEND_BASE_URL", "http://from-env.test/api/v4")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"processed_count": 0})

    async def run():
        async with _client(handler) as client:
            return await call_force_sync_run(client=client)

    asyncio.run(run())
    assert seen["url"] == "http://from-env.test/api/v4/sync/force-run"


def test_fetch_pending_syncs_requires_org_id() -> None:
    with pytest.raises(ValueError):
        asyncio.run(fetch_pending_syncs(""))
