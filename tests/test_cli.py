from typer.testing import CliRunner

import gptpr.cli as cli
from gptpr import __version__
from gptpr.cli import app

runner = CliRunner()


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"GPT-PR v{__version__}" in result.stdout


def test_status_lists_keys_and_routing():
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "API Keys" in result.stdout
    assert "Implementer" in result.stdout


def test_init_creates_config_and_gitignore(tmp_path):
    result = runner.invoke(app, ["init", str(tmp_path)])
    assert result.exit_code == 0
    assert (tmp_path / ".gpt-pr" / "config.yaml").exists()
    assert ".gpt-pr/" in (tmp_path / ".gitignore").read_text()

    # Second init does not duplicate the entry
    runner.invoke(app, ["init", str(tmp_path)])
    assert (tmp_path / ".gitignore").read_text().count(".gpt-pr/") == 1


def test_run_outside_git_repo_fails(tmp_path):
    result = runner.invoke(app, ["run", "do something", "--repo", str(tmp_path)])
    assert result.exit_code == 1


class _StubController:
    status = "committed"
    seen: dict = {}

    def __init__(self, **kwargs):
        _StubController.seen = kwargs

    def run(self, goal):
        return {"goal": goal, "status": self.status, "iterations": 2, "branch": "gpt-pr/x"}


def test_run_exit_codes(git_repo, monkeypatch):
    monkeypatch.setattr(cli, "Controller", _StubController)

    _StubController.status = "committed"
    result = runner.invoke(app, ["run", "add health", "--repo", str(git_repo), "--branch", "feature/x", "-y"])
    assert result.exit_code == 0
    assert _StubController.seen["branch"] == "feature/x"
    assert _StubController.seen["auto_approve"] is True

    _StubController.status = "reply_malformed"
    result = runner.invoke(app, ["run", "add health", "--repo", str(git_repo)])
    assert result.exit_code == 1


def test_run_base_option_overrides_config(git_repo, monkeypatch):
    monkeypatch.setattr(cli, "Controller", _StubController)
    _StubController.status = "committed"

    runner.invoke(app, ["run", "add health", "--repo", str(git_repo), "--base", "develop", "--max-iterations", "4"])
    assert _StubController.seen["config"].github.base_branch == "develop"
    assert _StubController.seen["max_iterations"] == 4
