import asyncio
import json
import os
import shutil
import uuid
from pathlib import Path
from typing import AsyncIterator

import aiofiles
import aiofiles.os
from loguru import logger

from tallybox.config import (
    BUFFER_SIZE,
    get_config_file,
    get_contest_dir,
    get_data_file,
)
from tallybox.errors import StorageError


async def iter_bytes(payload: bytes, buffer_size: int = BUFFER_SIZE) -> AsyncIterator[bytes]:
    view = memoryview(payload)
    for start in range(0, len(view), buffer_size):
        yield bytes(view[start : start + buffer_size])


def _split_buffer(block: bytes, buffer_size: int):
    if len(block) <= buffer_size:
        yield block
        return
    view = memoryview(block)
    for start in range(0, len(view), buffer_size):
        yield view[start : start + buffer_size]


def _delete_tree(root: Path) -> None:
    # Children go before their parent so an interrupted delete never leaves
    # an empty-looking directory that still has files under it.
    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        for name in filenames:
            os.remove(os.path.join(dirpath, name))
        for name in dirnames:
            os.rmdir(os.path.join(dirpath, name))
    os.rmdir(root)


class LocalStorage:
    def __init__(self, contests_dir: Path, buffer_size: int = BUFFER_SIZE):
        self.contests_dir = contests_dir
        self.buffer_size = buffer_size

    def get_contest_dir(self, contest_id: str) -> Path:
        return get_contest_dir(self.contests_dir, contest_id)

    def get_config_file(self, contest_id: str) -> Path:
        return get_config_file(self.contests_dir, contest_id)

    def get_data_file(self, contest_id: str) -> Path:
        return get_data_file(self.contests_dir, contest_id)

    async def create_contest(self, contest_id: str, config: dict) -> Path:
        contest_dir = self.get_contest_dir(contest_id)
        try:
            self.contests_dir.mkdir(parents=True, exist_ok=True)
            contest_dir.mkdir()
        except OSError as e:
            raise StorageError(f"Could not create '{contest_dir}': {e}") from e

        try:
            async with aiofiles.open(self.get_config_file(contest_id), "w") as f:
                await f.write(json.dumps(config, indent=2))
            data_file = self.get_data_file(contest_id)
            data_file.parent.mkdir()
            async with aiofiles.open(data_file, "wb"):
                pass
        except OSError as e:
            shutil.rmtree(contest_dir, ignore_errors=True)
            raise StorageError(
                f"Could not initialize contest {contest_id[:8]}...: {e}"
            ) from e

        return contest_dir

    async def data_size(self, contest_id: str) -> int:
        try:
            stat = await aiofiles.os.stat(self.get_data_file(contest_id))
        except OSError as e:
            raise StorageError(
                f"Could not read data file for contest {contest_id[:8]}...: {e}"
            ) from e
        return stat.st_size

    async def append(self, contest_id: str, stream: AsyncIterator[bytes]) -> int:
        """Append everything from ``stream`` to the contest's data file.

        Blocks are written at most ``buffer_size`` bytes at a time and the file is
        fsynced before returning. If anything fails part way, the file is
        truncated back to its previous length so the chunk can be resent.
        """
        data_file = self.get_data_file(contest_id)
        start_size = await self.data_size(contest_id)
        written = 0

        try:
            async with aiofiles.open(data_file, "ab") as f:
                async for block in stream:
                    for piece in _split_buffer(block, self.buffer_size):
                        await f.write(piece)
                        written += len(piece)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
        except OSError as e:
            self._rollback(data_file, start_size)
            raise StorageError(
                f"Could not append to contest {contest_id[:8]}...: {e}"
            ) from e
        except BaseException:
            self._rollback(data_file, start_size)
            raise

        return written

    def _rollback(self, data_file: Path, size: int) -> None:
        try:
            os.truncate(data_file, size)
            logger.warning(f"Truncated {data_file.name[:8]}... back to {size} bytes")
        except OSError as e:
            logger.error(f"Could not truncate {data_file} after failed append: {e}")

    async def delete_contest(self, contest_id: str) -> None:
        contest_dir = self.get_contest_dir(contest_id)
        if not contest_dir.exists():
            logger.warning(f"Contest directory already gone: {contest_id[:8]}...")
            return
        try:
            await asyncio.to_thread(_delete_tree, contest_dir)
        except OSError as e:
            raise StorageError(f"Could not delete '{contest_dir}': {e}") from e

    def list_contest_ids(self) -> list[str]:
        """Names of directories under the root that look like contests (UUID names)."""
        if not self.contests_dir.exists():
            return []

        contest_ids = []
        for d in self.contests_dir.iterdir():
            if not d.is_dir():
                continue
            try:
                uuid.UUID(d.name)
            except ValueError:
                logger.warning(f"Ignoring non-contest directory {d}")
                continue
            contest_ids.append(d.name)
        return sorted(contest_ids)
