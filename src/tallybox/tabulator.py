import json
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from loguru import logger

from tallybox.config import OUTPUT_DIR_NAME, SUMMARY_SUFFIX, TIMESTAMP_FORMAT
from tallybox.errors import ProcessingError


def make_timestamp(now: Optional[datetime] = None) -> str:
    if now is None:
        now = datetime.now()
    return now.strftime(TIMESTAMP_FORMAT)


def resolve_output_dir(config_path: Path) -> Path:
    """Where the engine writes results for the config at ``config_path``.

    Uses ``outputSettings.outputDirectory`` when the config names one (relative
    paths are taken from the config's directory), otherwise ``output/`` next to
    the config.
    """
    contest_dir = config_path.parent
    try:
        config = json.loads(config_path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ProcessingError(f"Could not read config {config_path.name}: {e}") from e

    output_settings = config.get("outputSettings") or {}
    output_dir = output_settings.get("outputDirectory") if isinstance(output_settings, dict) else None
    if not output_dir:
        return contest_dir / OUTPUT_DIR_NAME

    path = Path(output_dir).expanduser()
    if not path.is_absolute():
        path = contest_dir / path
    if not path.resolve().is_relative_to(contest_dir.resolve()):
        logger.warning(
            f"Output directory {path} is outside {contest_dir}; clear will not remove its files"
        )
    return path


@dataclass
class TabulationRun:
    output_dir: Path
    timestamp: str

    @property
    def summary_file(self) -> Path:
        return self.output_dir / f"{self.timestamp}{SUMMARY_SUFFIX}"


@runtime_checkable
class Tabulator(Protocol):
    def tabulate(self, config_path: Path, operator_name: str) -> TabulationRun: ...


class CommandTabulator:
    """Runs an external tabulation command and waits for it to exit.

    The command is a template; these placeholders are substituted in each
    argument: ``{config}``, ``{operator}``, ``{output_dir}``, ``{timestamp}``.
    The command is expected to write ``<output_dir>/<timestamp>_summary.json``.
    """

    def __init__(self, command: str | list[str]):
        if isinstance(command, str):
            command = shlex.split(command)
        if not command:
            raise ValueError("Tabulator command must not be empty")
        self.command = list(command)

    def _build_args(self, values: dict[str, str]) -> list[str]:
        args = []
        for arg in self.command:
            for key, value in values.items():
                arg = arg.replace(f"{{{key}}}", value)
            args.append(arg)
        return args

    def tabulate(self, config_path: Path, operator_name: str) -> TabulationRun:
        run = TabulationRun(resolve_output_dir(config_path), make_timestamp())
        run.output_dir.mkdir(parents=True, exist_ok=True)

        args = self._build_args(
            {
                "config": str(config_path),
                "operator": operator_name,
                "output_dir": str(run.output_dir),
                "timestamp": run.timestamp,
            }
        )
        logger.debug(f"Running tabulator: {args[0]}")

        try:
            subprocess.run(
                args,
                check=True,
                capture_output=True,
                cwd=str(config_path.parent),
            )
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace") if e.stderr else ""
            logger.error(f"Tabulator exited with {e.returncode}: {stderr}")
            raise ProcessingError(
                f"Tabulator exited with status {e.returncode}", stderr=stderr
            ) from e
        except OSError as e:
            logger.error(f"Could not run tabulator {args[0]}: {e}")
            raise ProcessingError(f"Could not run tabulator: {e}") from e

        return run


class UnconfiguredTabulator:
    def tabulate(self, config_path: Path, operator_name: str) -> TabulationRun:
        raise ProcessingError(
            "No tabulator configured (set TALLYBOX_TABULATOR_CMD or --tabulator-cmd)"
        )


def create_tabulator(command: str | list[str] | None) -> Tabulator:
    if not command:
        return UnconfiguredTabulator()
    return CommandTabulator(command)


def run_tabulation(tabulator: Tabulator, config_path: Path, operator_name: str) -> Path:
    """Tabulate and return the path of the summary artifact.

    The summary is not parsed; callers relay it verbatim.
    """
    operator_name = operator_name.strip()
    if not operator_name:
        raise ValueError("Operator name is required")

    run = tabulator.tabulate(config_path, operator_name)
    summary_file = run.summary_file
    if not summary_file.is_file():
        raise ProcessingError(f"Tabulator did not produce {summary_file.name}")
    return summary_file
