import asyncio
import time
from pathlib import Path
from typing import Optional

from tallybox.errors import NotFound, UnexpectedChunk


class ContestState:
    """In-memory record of a live contest.

    ``next_upload`` is the sequence number expected for the next chunk and always
    equals the number of chunks appended so far. Callers must hold ``lock``
    around ``check_chunk`` and ``advance`` so that the check and the append
    behave as one unit.
    """

    def __init__(self, contest_id: str, directory: Path):
        self.contest_id = contest_id
        self.directory = directory
        self.created_at = time.time()
        self.last_activity = self.created_at
        self.closed = False
        self.lock = asyncio.Lock()
        self._next_upload = 0

    @property
    def next_upload(self) -> int:
        return self._next_upload

    def check_open(self) -> None:
        if self.closed:
            raise NotFound(self.contest_id)

    def check_chunk(self, chunk: int) -> None:
        self.check_open()
        if chunk != self._next_upload:
            raise UnexpectedChunk(self.contest_id, chunk, self._next_upload)

    def advance(self) -> int:
        self._next_upload += 1
        self.touch()
        return self._next_upload

    def touch(self) -> None:
        self.last_activity = time.time()

    def idle_seconds(self, now: Optional[float] = None) -> float:
        if now is None:
            now = time.time()
        return now - self.last_activity

    def to_dict(self) -> dict:
        return {"contestId": self.contest_id, "nextUpload": self._next_upload}

    def __repr__(self) -> str:
        return f"ContestState({self.contest_id[:8]}..., next_upload={self._next_upload})"
