from __future__ import annotations

import asyncio

from pushrelay.core.logging import configure_logging
from pushrelay.workers.notification_worker import run_worker


async def _main() -> None:
    # Dedicated delivery process: polls the job table until SIGINT/SIGTERM.
    configure_logging()
    await run_worker()


if __name__ == "__main__":
    asyncio.run(_main())
