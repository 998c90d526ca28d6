"""Standalone mirror sync worker.

Drains the sync outbox against Google Sheets, either forever on a fixed
interval or for a single pass.

Env vars: see `.env.example` (DATABASE_URL, GOOGLE_SA_FILE, SYNC_*).

Run:
  python scripts/run_sync_worker.py           # loop every SYNC_POLL_INTERVAL_SECONDS
  python scripts/run_sync_worker.py --once    # one pass, print counts, exit
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from src.backend.app import configure_logging  # noqa: E402
from src.backend.common.config.app_config import AppConfig  # noqa: E402
from src.backend.common.database.database import init_db  # noqa: E402
from src.backend.v4.config.settings import build_runtime  # noqa: E402

logger = logging.getLogger("run_sync_worker")


async def _run_loop(runtime) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt.
            pass
    await runtime.worker.run_forever(stop_event)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Drain the receipt mirror sync outbox.")
    parser.add_argument("--once", action="store_true", help="Run a single drain pass and exit.")
    args = parser.parse_args(argv)

    config = AppConfig.from_env()
    configure_logging(config)
    runtime = build_runtime(config)
    init_db(runtime.engine)

    if not runtime.mirror.is_configured:
        logger.warning("Mirror client is not configured; every sync attempt will fail and back off")

    try:
        if args.once:
            result = runtime.worker.run_once()
            print(json.dumps(result.to_dict()))
            return 0

        try:
            asyncio.run(_run_loop(runtime))
        except KeyboardInterrupt:
            logger.info("Interrupted; exiting")
        return 0
    finally:
        runtime.engine.dispose()


if __name__ == "__main__":
    raise SystemExit(main())
