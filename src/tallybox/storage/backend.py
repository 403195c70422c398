from pathlib import Path
from typing import AsyncIterator, Protocol, runtime_checkable


@runtime_checkable
class ContestStorage(Protocol):
    async def create_contest(self, contest_id: str, config: dict) -> Path: ...

    async def append(self, contest_id: str, stream: AsyncIterator[bytes]) -> int: ...

    async def data_size(self, contest_id: str) -> int: ...

    async def delete_contest(self, contest_id: str) -> None: ...

    def list_contest_ids(self) -> list[str]: ...

    def get_contest_dir(self, contest_id: str) -> Path: ...

    def get_config_file(self, contest_id: str) -> Path: ...
