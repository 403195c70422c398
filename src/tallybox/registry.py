import copy
import threading
import uuid

from loguru import logger

from tallybox.contest import ContestState
from tallybox.errors import NotFound
from tallybox.storage.backend import ContestStorage


def _point_cvr_source_at_data_file(config: dict, contest_id: str) -> dict:
    """Return a copy of ``config`` whose first CVR source reads the uploaded data.

    The client's config refers to its CVR file by a path on the client's
    filesystem. Uploaded chunks land in ``<id>/<id>`` relative to the config
    file, so the first source is rewritten to that.
    """
    config = copy.deepcopy(config)
    sources = config.get("cvrFileSources")
    if isinstance(sources, list) and sources and isinstance(sources[0], dict):
        sources[0]["filePath"] = f"{contest_id}/{contest_id}"
    return config


class ContestRegistry:
    def __init__(self, storage: ContestStorage):
        self.storage = storage
        self._contests: dict[str, ContestState] = {}
        self._lock = threading.Lock()

    async def create(self, config: dict) -> ContestState:
        contest_id = str(uuid.uuid4())
        config = _point_cvr_source_at_data_file(config, contest_id)
        contest_dir = await self.storage.create_contest(contest_id, config)

        state = ContestState(contest_id, contest_dir)
        with self._lock:
            self._contests[contest_id] = state
        logger.info(f"Created contest {contest_id[:8]}... in {contest_dir}")
        return state

    def get(self, contest_id: str) -> ContestState:
        with self._lock:
            state = self._contests.get(contest_id)
        if state is None:
            raise NotFound(contest_id)
        return state

    def remove(self, contest_id: str) -> ContestState:
        with self._lock:
            state = self._contests.pop(contest_id, None)
        if state is None:
            raise NotFound(contest_id)
        return state

    def list_contests(self) -> list[ContestState]:
        with self._lock:
            return list(self._contests.values())

    def __contains__(self, contest_id: str) -> bool:
        with self._lock:
            return contest_id in self._contests

    def __len__(self) -> int:
        with self._lock:
            return len(self._contests)
