import os
from pathlib import Path

APP_NAME = "tallybox"

API_PREFIX = "/api/v1.0"

HTTP_PORT = int(os.environ.get("TALLYBOX_HTTP_PORT", "8080"))
HOST = os.environ.get("TALLYBOX_HOST", "0.0.0.0")

# Copy buffer for chunk appends; memory use per upload is bounded by this.
BUFFER_SIZE = 65536

CONFIG_FILE_EXT = ".json"
OUTPUT_DIR_NAME = "output"
SUMMARY_SUFFIX = "_summary.json"
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

TABULATOR_CMD = os.environ.get("TALLYBOX_TABULATOR_CMD")
EXPIRE_AFTER_MINUTES = int(os.environ.get("TALLYBOX_EXPIRE_AFTER_MINUTES", "0"))


def get_default_data_dir() -> Path:
    return Path.home() / ".tallybox"


def get_contests_base_dir() -> Path:
    env_dir = os.environ.get("TALLYBOX_CONTEST_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    return get_default_data_dir() / "contests"


def get_contest_dir(contests_dir: Path, contest_id: str) -> Path:
    return contests_dir / contest_id


def get_config_file(contests_dir: Path, contest_id: str) -> Path:
    return get_contest_dir(contests_dir, contest_id) / f"{contest_id}{CONFIG_FILE_EXT}"


def get_data_file(contests_dir: Path, contest_id: str) -> Path:
    return get_contest_dir(contests_dir, contest_id) / contest_id / contest_id
