import asyncio
import signal
from pathlib import Path
from typing import Optional

import uvicorn
from loguru import logger

from tallybox.config import EXPIRE_AFTER_MINUTES, HOST, HTTP_PORT, TABULATOR_CMD
from tallybox.routes import create_app
from tallybox.scheduler import ExpiryScheduler
from tallybox.service import ContestService
from tallybox.storage import LocalStorage
from tallybox.tabulator import create_tabulator


class TallyboxServer:
    """Owns the contest service for the lifetime of the process.

    Contests live only in memory, so on start any contest directories left by a
    previous run are removed, and on stop every live contest is cleared.
    """

    def __init__(
        self,
        contests_dir: Path,
        host: str = HOST,
        port: int = HTTP_PORT,
        tabulator_cmd: Optional[str] = TABULATOR_CMD,
        expire_after_minutes: int = EXPIRE_AFTER_MINUTES,
    ):
        self.contests_dir = contests_dir
        self.host = host
        self.port = port
        self.service = ContestService(
            LocalStorage(contests_dir), create_tabulator(tabulator_cmd)
        )
        self.scheduler = ExpiryScheduler(self.service, expire_after_minutes)
        self.http_server: uvicorn.Server | None = None

    async def start(self):
        self.contests_dir.mkdir(parents=True, exist_ok=True)
        purged = await self.service.purge_orphans()
        if purged:
            logger.info(f"Removed {purged} contest(s) left from a previous run")

        self.scheduler.start()

        app = create_app(self.service)
        config = uvicorn.Config(
            app,
            host=self.host,
            port=self.port,
            log_level="info",
            access_log=True,
        )
        self.http_server = uvicorn.Server(config)

        logger.info(f"tallybox listening on http://{self.host}:{self.port}")
        logger.info(f"Writing contests to: {self.contests_dir.absolute()}")

        await self.http_server.serve()

    async def stop(self):
        logger.info("Shutting down tallybox")
        self.scheduler.stop()
        if self.http_server:
            self.http_server.should_exit = True
            await asyncio.sleep(0.1)

    async def close(self):
        self.scheduler.stop()
        cleared = await self.service.teardown_all()
        if cleared:
            logger.info(f"Cleared {cleared} live contest(s)")
        logger.info("Server stopped")

    async def run_async(self):
        loop = asyncio.get_running_loop()

        def handle_shutdown(signum):
            logger.info(f"Received signal {signum}, shutting down...")
            asyncio.create_task(self.stop())

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_shutdown(s))

        try:
            await self.start()
        finally:
            await self.close()

    def run(self):
        asyncio.run(self.run_async())
