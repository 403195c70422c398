import json
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from tallybox.errors import ProcessingError
from tallybox.routes import create_app
from tallybox.service import ContestService
from tallybox.storage import LocalStorage
from tallybox.tabulator import TabulationRun, resolve_output_dir


class FakeTabulator:
    """Writes a small summary naming the operator, or fails when told to."""

    def __init__(self, timestamp: str = "2024-01-02_03-04-05"):
        self.timestamp = timestamp
        self.calls: list[tuple[Path, str]] = []
        self.error: ProcessingError | None = None

    def tabulate(self, config_path: Path, operator_name: str) -> TabulationRun:
        self.calls.append((config_path, operator_name))
        if self.error is not None:
            raise self.error
        run = TabulationRun(resolve_output_dir(config_path), self.timestamp)
        run.output_dir.mkdir(parents=True, exist_ok=True)
        summary = {"operator": operator_name, "config": config_path.name}
        run.summary_file.write_text(json.dumps(summary))
        return run


SAMPLE_CONFIG = {
    "outputSettings": {"contestName": "Mayor"},
    "cvrFileSources": [{"filePath": "/home/clerk/cvr.csv", "provider": "cdf"}],
    "candidates": [{"name": "Alice"}, {"name": "Bob"}],
}


@pytest.fixture
def sample_config():
    return json.loads(json.dumps(SAMPLE_CONFIG))


@pytest.fixture
def temp_contests_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "contests"


@pytest.fixture
def local_storage(temp_contests_dir):
    return LocalStorage(temp_contests_dir)


@pytest.fixture
def fake_tabulator():
    return FakeTabulator()


@pytest.fixture
def service(local_storage, fake_tabulator):
    return ContestService(local_storage, fake_tabulator)


@pytest.fixture
def client(service):
    with TestClient(create_app(service)) as test_client:
        yield test_client
