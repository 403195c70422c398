import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from tallybox.cli import build_parser, cmd_submit, cmd_version, main
from tallybox.errors import NotFound


class TestParser:
    def test_start_defaults(self):
        args = build_parser().parse_args(["start"])
        assert args.contest_dir is None
        assert args.expire_after_minutes == 0
        assert args.func.__name__ == "cmd_start"

    def test_submit_requires_name(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["submit", "config.json", "cvr.csv"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


def test_version_prints_app_name(capsys):
    cmd_version(None)
    out = capsys.readouterr().out
    assert out.startswith("tallybox version ")


def test_start_builds_server_from_flags(tmp_path):
    contest_dir = tmp_path / "contests"
    with patch("tallybox.cli.TallyboxServer") as server_cls:
        main(
            [
                "start",
                "--port",
                "9000",
                "--contest-dir",
                str(contest_dir),
                "--tabulator-cmd",
                "engine {config}",
                "--expire-after-minutes",
                "15",
            ]
        )

    kwargs = server_cls.call_args.kwargs
    assert kwargs["contests_dir"] == contest_dir.resolve()
    assert kwargs["port"] == 9000
    assert kwargs["tabulator_cmd"] == "engine {config}"
    assert kwargs["expire_after_minutes"] == 15
    server_cls.return_value.run.assert_called_once()


class TestSubmit:
    @pytest.fixture
    def submit_args(self, tmp_path):
        config = tmp_path / "config.json"
        config.write_text(json.dumps({"cvrFileSources": []}))
        cvr = tmp_path / "cvr.csv"
        cvr.write_bytes(b"Alice\n")
        return build_parser().parse_args(
            ["submit", str(config), str(cvr), "--name", "Pat", "--chunk-size", "2"]
        )

    def test_prints_summary(self, submit_args, capsys):
        with patch(
            "tallybox.cli.ContestClient.submit",
            new_callable=AsyncMock,
            return_value=b'{"winner": "Alice"}',
        ) as submit:
            cmd_submit(submit_args)

        config, cvr_path, operator = submit.await_args.args
        assert config == {"cvrFileSources": []}
        assert cvr_path == Path(submit_args.cvr)
        assert operator == "Pat"
        assert capsys.readouterr().out == '{"winner": "Alice"}\n'

    def test_contest_error_exits_nonzero(self, submit_args, capsys):
        with patch(
            "tallybox.cli.ContestClient.submit",
            new_callable=AsyncMock,
            side_effect=NotFound("abc"),
        ):
            with pytest.raises(SystemExit) as exc_info:
                cmd_submit(submit_args)

        assert exc_info.value.code == 1
        assert "No such contest" in capsys.readouterr().err
