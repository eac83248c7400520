"""
CLI Tests.

============================================================
PURPOSE
============================================================
Argument parsing and exit codes of the data-acquisition command.

============================================================
"""

import json

import pytest

from data_acquisition import cli
from data_acquisition.orchestrator import create_orchestrator


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "acquisition.yaml"
    path.write_text("max_errors: 10\n")
    return str(path)


@pytest.fixture
def patched(monkeypatch, fast_config, fake_transport):
    """Route the CLI through the fake transport on fast settings."""
    monkeypatch.setattr(
        cli,
        "create_orchestrator",
        lambda config: create_orchestrator(fast_config, transport=fake_transport),
    )
    return fake_transport


class TestParser:
    """Tests for create_parser()."""

    def test_fetch_defaults(self):
        args = cli.create_parser().parse_args(["fetch", "BTC"])

        assert args.kind == "price"
        assert args.timeout is None
        assert args.log_level == "INFO"

    def test_serve_defaults(self):
        args = cli.create_parser().parse_args(["serve"])

        assert args.port == 8090
        assert args.host == "127.0.0.1"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.create_parser().parse_args([])

    def test_unknown_kind_rejected(self):
        with pytest.raises(SystemExit):
            cli.create_parser().parse_args(["fetch", "BTC", "--kind", "weather"])


class TestMain:
    """Tests for main()."""

    def test_fetch_prints_record(self, patched, config_file, capsys):
        patched.add("api.coingecko.com", (200, {"bitcoin": {"usd": 50000}}))

        code = cli.main(["--config", config_file, "fetch", "BTC"])

        output = json.loads(capsys.readouterr().out)
        assert code == 0
        assert output["status"] == "ok"
        assert output["data"]["source"] == "coingecko"
        assert output["data"]["payload"]["price"] == "50000"

    def test_fetch_failure_exit_code(self, patched, config_file, capsys):
        patched.add("api.alternative.me", (500, {}))

        code = cli.main(["--config", config_file, "fetch", "global", "--kind", "sentiment"])

        output = json.loads(capsys.readouterr().out)
        assert code == 1
        assert output["error"]["error_type"] == "ProvidersExhaustedError"

    def test_health(self, patched, config_file, capsys):
        code = cli.main(["--config", config_file, "health"])

        output = json.loads(capsys.readouterr().out)
        assert code == 0
        assert "coingecko" in output["providers"]

    def test_missing_config_file(self, tmp_path, capsys):
        code = cli.main(["--config", str(tmp_path / "missing.yaml"), "health"])

        assert code == 1
        assert "Error" in capsys.readouterr().err
