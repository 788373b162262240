import json

from gptpr.run_log import RunLog
from gptpr.state import IterationResult


def _result(gameplan="", complete=False) -> IterationResult:
    return IterationResult.model_validate({
        "patch": "",
        "patchDescription": "desc",
        "nextIteration": {"gameplan": gameplan, "commands": ["ls"]},
        "complete": complete,
    })


def test_layout(tmp_path):
    log = RunLog(tmp_path, ".gpt-pr", "gpt-pr/health")
    assert log.branch_dir == tmp_path / ".gpt-pr" / "gpt-pr" / "health"

    plan_path = log.write_plan({"branch_name": "health"})
    assert json.loads(plan_path.read_text()) == {"branch_name": "health"}

    patch_path = log.write_patch(0, "diff --git a/x b/x\n")
    assert patch_path == log.branch_dir / "0" / "patch"


def test_response_written_only_with_gameplan(tmp_path):
    log = RunLog(tmp_path, ".gpt-pr", "b")

    assert log.write_response(0, _result(gameplan="")) == []
    assert not (log.branch_dir / "0").exists()

    paths = log.write_response(1, _result(gameplan="look at tests"))
    assert [p.name for p in paths] == ["nextGameplan.md", "response.json"]
    assert (log.branch_dir / "1" / "nextGameplan.md").read_text() == "look at tests"
    raw = json.loads((log.branch_dir / "1" / "response.json").read_text())
    assert raw["nextIteration"]["gameplan"] == "look at tests"
    assert raw["patchDescription"] == "desc"


def test_command_output_written_only_when_present(tmp_path):
    log = RunLog(tmp_path, ".gpt-pr", "b")
    assert log.write_command_output(0, {}) is None
    assert not (log.branch_dir / "0").exists()

    path = log.write_command_output(2, {"ls": "app.js\n"})
    assert path.read_text() == "$ ls\napp.js\n"


def test_mark_complete_and_change_log(tmp_path):
    log = RunLog(tmp_path, ".gpt-pr", "b")
    assert log.mark_complete(3, "added route").read_text() == "added route"
    assert log.write_change_log("# Change Log\n").read_text() == "# Change Log\n"
    assert log.change_log_path.exists()
