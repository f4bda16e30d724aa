"""
Tests for CLI commands — run, plan, failures, history, menu, and
global options.
"""

import json
import textwrap
from pathlib import Path

import pytest
from click.testing import CliRunner

from archsetup.main import cli


def _project(tmp_path: Path, plan: str, extra: str = "") -> Path:
    """Write archsetup.yml + plan.yml rooted in tmp_path."""
    (tmp_path / "plan.yml").write_text(textwrap.dedent(plan))
    config = tmp_path / "archsetup.yml"
    config.write_text(f"home: {tmp_path}\nstate_dir: {tmp_path / 'state'}\nplan: plan.yml\n{extra}")
    return config


COMMANDS = """\
    name: commands
    steps:
      - {kind: command, id: ok, argv: ["true"]}
      - {kind: command, id: broken, argv: ["false"]}
      - {kind: command, id: after, argv: ["true"]}
"""

FILES = """\
    name: files
    steps:
      - kind: file
        path: ~/.config/i3/config
        content: "set $mod Mod4\\n"
"""


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()


class TestCLIGlobal:
    """Tests for global CLI behavior."""

    def test_help(self, cli_runner):
        result = cli_runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Arch Linux" in result.output

    def test_version(self, cli_runner):
        result = cli_runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestRunCommand:
    def test_mock_run(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS)
        result = cli_runner.invoke(cli, ["-c", str(config), "run", "--mock"])
        assert result.exit_code == 0, result.output
        assert "[mock] commands" in result.output
        assert "✓ broken" in result.output

    def test_mock_json(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS)
        result = cli_runner.invoke(cli, ["-c", str(config), "run", "--mock", "--json"])
        data = json.loads(result.stdout)
        assert data["report"]["state"] == "completed"
        assert data["steps_planned"] == 3

    def test_degraded_exit_code(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS)
        result = cli_runner.invoke(cli, ["-c", str(config), "run"])
        assert result.exit_code == 2
        assert "✗ broken" in result.output
        assert "✓ after" in result.output
        assert "completed_with_failures" in result.output
        log = tmp_path / "state" / "failed_packages.log"
        assert " - broken - " in log.read_text()

    def test_halted_exit_code(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS, "critical_steps: [broken]\n")
        result = cli_runner.invoke(cli, ["-c", str(config), "run"])
        assert result.exit_code == 3
        assert "Halted by critical step: broken" in result.output
        assert "✓ after" not in result.output
        assert "1 step(s) not run" in result.output

    def test_dry_run_writes_nothing(self, cli_runner, tmp_path):
        config = _project(tmp_path, FILES)
        result = cli_runner.invoke(cli, ["-c", str(config), "run", "--dry-run"])
        assert result.exit_code == 0, result.output
        assert "[dry-run]" in result.output
        assert not (tmp_path / ".config" / "i3" / "config").exists()
        assert not (tmp_path / "state" / "failed_packages.log").exists()

    def test_real_file_run_is_idempotent(self, cli_runner, tmp_path):
        config = _project(tmp_path, FILES)
        first = cli_runner.invoke(cli, ["-c", str(config), "run", "--json"])
        assert json.loads(first.stdout)["report"]["succeeded"] == 1
        second = cli_runner.invoke(cli, ["-c", str(config), "run", "--json"])
        assert json.loads(second.stdout)["report"]["skipped"] == 1
        assert (tmp_path / ".config" / "i3" / "config").read_text() == "set $mod Mod4\n"

    def test_plan_override(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS)
        (tmp_path / "other.csv").write_text(",vim,editor\n")
        result = cli_runner.invoke(
            cli, ["-c", str(config), "run", "--mock", "--json", "--plan", str(tmp_path / "other.csv")]
        )
        assert json.loads(result.stdout)["report"]["results"][0]["step_id"] == "repo:vim"

    def test_config_error(self, cli_runner, tmp_path):
        result = cli_runner.invoke(cli, ["-c", str(tmp_path / "missing.yml"), "run"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_plan_error(self, cli_runner, tmp_path):
        config = _project(tmp_path, "- {kind: bogus}\n")
        result = cli_runner.invoke(cli, ["-c", str(config), "run", "--json"])
        assert result.exit_code == 1
        assert "error" in json.loads(result.stdout)

    def test_history_written(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS)
        cli_runner.invoke(cli, ["-c", str(config), "run", "--mock"])
        lines = (tmp_path / "state" / "runs.ndjson").read_text().splitlines()
        entry = json.loads(lines[-1])
        assert entry["state"] == "completed"
        assert entry["context"] == {"mock": True}


class TestPlanCommands:
    def test_show(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS, "critical_steps: [ok]\n")
        result = cli_runner.invoke(cli, ["-c", str(config), "plan", "show"])
        assert result.exit_code == 0
        assert "commands (3 steps)" in result.output
        assert "[critical]" in result.output

    def test_show_json(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS)
        result = cli_runner.invoke(cli, ["-c", str(config), "plan", "show", "--json"])
        data = json.loads(result.stdout)
        assert [s["id"] for s in data["steps"]] == ["ok", "broken", "after"]

    def test_show_default(self, cli_runner, tmp_path):
        config = tmp_path / "archsetup.yml"
        config.write_text(f"home: {tmp_path}\n")
        result = cli_runner.invoke(cli, ["-c", str(config), "plan", "show"])
        assert result.exit_code == 0
        assert "build:yay-bin" in result.output

    def test_check_valid(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS)
        result = cli_runner.invoke(cli, ["-c", str(config), "plan", "check"])
        assert result.exit_code == 0
        assert "Plan is valid" in result.output

    def test_check_warning(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS, "critical_steps: [nope]\n")
        result = cli_runner.invoke(cli, ["-c", str(config), "plan", "check", "--json"])
        data = json.loads(result.stdout)
        assert data["valid"]
        assert "nope" in data["warnings"][0]

    def test_check_invalid(self, cli_runner, tmp_path):
        config = _project(tmp_path, "- {kind: bogus}\n")
        result = cli_runner.invoke(cli, ["-c", str(config), "plan", "check"])
        assert result.exit_code == 1
        assert "Plan errors" in result.output


class TestFailuresAndHistory:
    def test_no_failures(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS)
        result = cli_runner.invoke(cli, ["-c", str(config), "failures"])
        assert result.exit_code == 0
        assert "No failures recorded" in result.output

    def test_failures_after_run(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS)
        cli_runner.invoke(cli, ["-c", str(config), "run"])
        result = cli_runner.invoke(cli, ["-c", str(config), "failures", "--json"])
        records = json.loads(result.stdout)
        assert [r["step_id"] for r in records] == ["broken"]

    def test_history(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS)
        cli_runner.invoke(cli, ["-c", str(config), "run"])
        result = cli_runner.invoke(cli, ["-c", str(config), "history"])
        assert result.exit_code == 0
        assert "completed_with_failures" in result.output

    def test_history_empty(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS)
        result = cli_runner.invoke(cli, ["-c", str(config), "history", "--json"])
        assert json.loads(result.stdout) == []


class TestMenu:
    def test_exit(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS)
        result = cli_runner.invoke(cli, ["-c", str(config), "menu"], input="0\n")
        assert result.exit_code == 0
        assert "1. Install all" in result.output

    def test_install_then_exit(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS)
        result = cli_runner.invoke(cli, ["-c", str(config), "menu"], input="1\n0\n")
        assert result.exit_code == 0
        assert "✗ broken" in result.output
        assert (tmp_path / "state" / "runs.ndjson").is_file()

    def test_invalid_choice_reprompts(self, cli_runner, tmp_path):
        config = _project(tmp_path, COMMANDS)
        result = cli_runner.invoke(cli, ["-c", str(config), "menu"], input="7\n0\n")
        assert result.exit_code == 0
        assert "Bye." in result.output
