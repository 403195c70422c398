import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

import aiofiles
from loguru import logger

from tallybox import APP_NAME, get_version
from tallybox.errors import NotFound, StorageError, UnexpectedChunk
from tallybox.registry import ContestRegistry
from tallybox.storage import ContestStorage, iter_bytes
from tallybox.tabulator import Tabulator, run_tabulation


@dataclass
class TabulationResult:
    contest_id: str
    summary_file: Path
    content: bytes


class ContestService:
    """The contest protocol: create, upload chunks, tabulate, clear.

    Each contest's lock is held for the whole of an upload (sequence check,
    append, counter increment), a tabulation, and the start of a teardown, so
    those never overlap for the same contest. Teardown marks the contest closed
    and removes it from the registry before deleting its files; anything that
    was waiting on the lock then fails with NotFound.
    """

    def __init__(self, storage: ContestStorage, tabulator: Tabulator):
        self.storage = storage
        self.tabulator = tabulator
        self.registry = ContestRegistry(storage)

    def version(self) -> str:
        return f"{APP_NAME} {get_version()}"

    async def create(self, config: dict) -> dict:
        state = await self.registry.create(config)
        return state.to_dict()

    async def upload(
        self, contest_id: str, chunk: int, payload: bytes | AsyncIterator[bytes]
    ) -> dict:
        state = self.registry.get(contest_id)
        if isinstance(payload, (bytes, bytearray, memoryview)):
            payload = iter_bytes(bytes(payload))

        async with state.lock:
            try:
                state.check_chunk(chunk)
            except UnexpectedChunk as e:
                logger.warning(f"Rejected chunk for contest {contest_id[:8]}...: {e}")
                raise

            try:
                written = await self.storage.append(contest_id, payload)
            except StorageError as e:
                logger.error(f"Append failed for contest {contest_id[:8]}...: {e}")
                raise

            state.advance()
            result = state.to_dict()

        logger.debug(
            f"Accepted chunk {chunk} ({written} bytes) for contest {contest_id[:8]}..."
        )
        return result

    async def tabulate(self, contest_id: str, operator_name: str) -> TabulationResult:
        state = self.registry.get(contest_id)

        async with state.lock:
            state.check_open()
            config_path = self.storage.get_config_file(contest_id)
            logger.info(
                f"Tabulating contest {contest_id[:8]}... for operator '{operator_name.strip()}'"
            )
            summary_file = await asyncio.to_thread(
                run_tabulation, self.tabulator, config_path, operator_name
            )
            async with aiofiles.open(summary_file, "rb") as f:
                content = await f.read()
            state.touch()

        logger.info(f"Tabulated contest {contest_id[:8]}... -> {summary_file.name}")
        return TabulationResult(contest_id, summary_file, content)

    async def teardown(self, contest_id: str) -> None:
        state = self.registry.get(contest_id)

        async with state.lock:
            state.check_open()
            state.closed = True
            self.registry.remove(contest_id)

        try:
            await self.storage.delete_contest(contest_id)
        except StorageError as e:
            logger.error(f"Could not delete storage for contest {contest_id[:8]}...: {e}")
            raise
        logger.info(f"Cleared contest {contest_id[:8]}...")

    async def teardown_all(self) -> int:
        cleared = 0
        for state in self.registry.list_contests():
            if await self._teardown_quietly(state.contest_id):
                cleared += 1
        return cleared

    async def expire_idle(self, max_idle_seconds: float) -> list[str]:
        now = time.time()
        expired = []
        for state in self.registry.list_contests():
            if state.lock.locked() or state.idle_seconds(now) < max_idle_seconds:
                continue
            logger.info(
                f"Expiring contest {state.contest_id[:8]}... "
                f"(idle {int(state.idle_seconds(now))}s)"
            )
            if await self._teardown_quietly(state.contest_id):
                expired.append(state.contest_id)
        return expired

    async def _teardown_quietly(self, contest_id: str) -> bool:
        try:
            await self.teardown(contest_id)
        except NotFound:
            return False
        except StorageError:
            # Already logged; the registry entry is gone either way.
            return False
        return True

    async def purge_orphans(self) -> int:
        """Delete UUID-named contest directories that have no registry entry."""
        purged = 0
        for contest_id in self.storage.list_contest_ids():
            if contest_id in self.registry:
                continue
            logger.warning(f"Removing orphaned contest directory {contest_id[:8]}...")
            await self.storage.delete_contest(contest_id)
            purged += 1
        return purged
