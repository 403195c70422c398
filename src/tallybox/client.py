import json
from pathlib import Path
from typing import Optional

import aiofiles
import aiohttp
from loguru import logger

from tallybox.config import API_PREFIX, BUFFER_SIZE
from tallybox.errors import (
    ContestError,
    NotFound,
    ProcessingError,
    StorageError,
    UnexpectedChunk,
)

DEFAULT_CHUNK_SIZE = BUFFER_SIZE * 16


class ClientError(ContestError):
    kind = "client_error"

    def __init__(self, status: int, detail: str):
        super().__init__(f"HTTP {status}: {detail}")
        self.status = status


def _error_from_response(status: int, body: dict, contest_id: str) -> ContestError:
    detail = str(body.get("detail", ""))
    kind = body.get("error")
    if kind == NotFound.kind:
        return NotFound(contest_id)
    if kind == UnexpectedChunk.kind:
        return UnexpectedChunk(
            contest_id, body.get("received", -1), body.get("expected", -1)
        )
    if kind == StorageError.kind:
        return StorageError(detail)
    if kind == ProcessingError.kind:
        return ProcessingError(detail, stderr=body.get("stderr"))
    return ClientError(status, detail)


def _contest_id(request_kwargs: dict) -> str:
    return (request_kwargs.get("params") or {}).get("contestId", "")


class ContestClient:
    """Drives the contest API of a running tallybox server."""

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.base_url = base_url.rstrip("/") + API_PREFIX
        self.chunk_size = chunk_size
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "ContestClient":
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _request(self, method: str, endpoint: str, **kwargs) -> bytes:
        url = f"{self.base_url}/{endpoint}"
        async with self._session.request(method, url, **kwargs) as response:
            body = await response.read()
            if response.status >= 400:
                try:
                    error_body = await response.json(content_type=None)
                except ValueError:
                    error_body = {"detail": body.decode(errors="replace")}
                if not isinstance(error_body, dict):
                    error_body = {"detail": str(error_body)}
                raise _error_from_response(
                    response.status, error_body, _contest_id(kwargs)
                )
            return body

    async def _request_json(self, method: str, endpoint: str, **kwargs) -> dict:
        return json.loads(await self._request(method, endpoint, **kwargs))

    async def app_version(self) -> str:
        body = await self._request("GET", "appVersion")
        return body.decode()

    async def new_contest(self, config: dict) -> dict:
        return await self._request_json("POST", "newContest", json=config)

    async def cast_votes(self, contest_id: str, chunk: int, data: bytes) -> dict:
        return await self._request_json(
            "POST",
            "castVotes",
            params={"contestId": contest_id, "chunk": str(chunk)},
            data=data,
        )

    async def upload_file(self, contest_id: str, cvr_path: Path) -> int:
        """Send ``cvr_path`` as consecutive chunks; returns the chunk count."""
        next_upload = 0
        async with aiofiles.open(cvr_path, "rb") as f:
            while True:
                data = await f.read(self.chunk_size)
                if not data and next_upload > 0:
                    break
                result = await self.cast_votes(contest_id, next_upload, data)
                next_upload = result["nextUpload"]
                if not data:
                    break
        logger.info(f"Uploaded {cvr_path.name} in {next_upload} chunk(s)")
        return next_upload

    async def tabulate(self, contest_id: str, operator_name: str) -> bytes:
        return await self._request(
            "GET", "tabulate", params={"contestId": contest_id, "name": operator_name}
        )

    async def clear(self, contest_id: str) -> None:
        await self._request("GET", "clear", params={"contestId": contest_id})

    async def submit(
        self, config: dict, cvr_path: Path, operator_name: str, keep: bool = False
    ) -> bytes:
        created = await self.new_contest(config)
        contest_id = created["contestId"]
        logger.info(f"Created contest {contest_id[:8]}...")
        try:
            await self.upload_file(contest_id, cvr_path)
            return await self.tabulate(contest_id, operator_name)
        finally:
            if not keep:
                await self.clear(contest_id)
