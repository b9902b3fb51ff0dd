from __future__ import annotations

import asyncio
import sys

from pushrelay.core.logging import configure_logging
from pushrelay.workers.notification_worker import run_once


async def _run() -> int:
    configure_logging()
    summary = await run_once()
    print(
        f"status={summary.status} selected={summary.selected} sent={summary.sent} "
        f"failed={summary.failed} skipped={summary.skipped} endpoints_removed={summary.endpoints_removed}"
    )
    # Non-zero exit lets cron wrappers alert on store outages.
    return 1 if summary.aborted else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(_run()))
