"""Tests for warden.cli -- argument parsing and command handlers."""

import pytest
from rich.console import Console

from warden import __version__, cli


@pytest.fixture(autouse=True)
def quiet_cli(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda *a, **k: None)
    monkeypatch.setattr(cli, "console", Console(width=300))


@pytest.fixture
def fleet_file(tmp_path):
    path = tmp_path / "fleet.yaml"
    path.write_text(
        "system:\n"
        "  tick_interval_s: 0.01\n"
        "  data_dir: null\n"
        "agents:\n"
        "  - id: Guard1\n"
        "    kind: protector\n"
        "    position: [0, 64, 0]\n"
        "    items: [iron_sword]\n"
        "world:\n"
        "  entities:\n"
        "    - {id: z1, name: zombie, position: [40, 64, 40]}\n"
    )
    return str(path)


class TestParser:
    def test_subcommands(self):
        parser = cli.build_parser()
        args = parser.parse_args(["run", "--config", "x.yaml", "--no-persist", "--operator", "Steve"])
        assert args.command == "run"
        assert args.no_persist is True
        assert args.operator == "Steve"

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            cli.main(["--version"])
        assert __version__ in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 0
        assert "usage: warden" in capsys.readouterr().out


class TestValidate:
    def test_valid(self, fleet_file, capsys):
        assert cli.main(["validate", "--config", fleet_file]) == 0
        assert "valid (1 agent(s))" in capsys.readouterr().out

    def test_invalid(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text("agents:\n  - kind: dragon\n")
        assert cli.main(["validate", "--config", str(path)]) == 1
        out = capsys.readouterr().out
        assert "needs an 'id'" in out

    def test_missing_file(self, tmp_path, capsys):
        assert cli.main(["validate", "--config", str(tmp_path / "nope.yaml")]) == 1
        assert "Config file not found" in capsys.readouterr().out


class TestStatus:
    def test_shows_agents_and_entities(self, fleet_file, capsys):
        assert cli.main(["status", "--config", fleet_file]) == 0
        out = capsys.readouterr().out
        assert "Guard1" in out
        assert "World entities" in out
        assert "zombie" in out

    def test_empty_fleet(self, tmp_path, capsys):
        path = tmp_path / "empty.yaml"
        path.write_text("agents: []\n")
        assert cli.main(["status", "--config", str(path)]) == 0
        assert "No agents configured" in capsys.readouterr().out


class TestRun:
    def test_console_session(self, fleet_file, monkeypatch, capsys):
        lines = ["#list", "#goto Guard1 3 64 0", "quit"]
        monkeypatch.setattr("builtins.input", lambda: lines.pop(0))
        assert cli.main(["run", "--config", fleet_file, "--no-persist", "--operator", "Steve"]) == 0
        out = capsys.readouterr().out
        assert "Guard1 [protector] idle" in out
        assert "on my way to (3, 64, 0)" in out

    def test_invalid_config_does_not_start(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text("retreat:\n  health_fraction: 2\n")
        assert cli.main(["run", "--config", str(path)]) == 1
        assert "health_fraction" in capsys.readouterr().out
