import json
import re
import subprocess

import pytest

from conftest import FakeRouter, reply
from gptpr.agents import AgentContext, MalformedReplyError, extract_outer_json, strip_markdown
from gptpr.agents.implementer import ImplementerAgent
from gptpr.agents.planner import PlannerAgent, derive_branch_name, sanitize_branch_name
from gptpr.agents.release import ChangeLog, ReleaseAgent
from gptpr.router import AgentMessage


def _context(**extra) -> AgentContext:
    return AgentContext(goal="Add a health endpoint", repo_path="/tmp/repo", bundle="### Goal\nx", extra=extra)


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------

def test_strip_markdown():
    assert strip_markdown('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_markdown('  {"a": 1}  ') == '{"a": 1}'


def test_extract_outer_json_ignores_braces_in_strings():
    text = 'Sure! {"patch": "if (x) { y(); }", "complete": true} Hope that helps.'
    assert json.loads(extract_outer_json(text)) == {"patch": "if (x) { y(); }", "complete": True}
    assert extract_outer_json("no json here") is None


# ---------------------------------------------------------------------------
# Implementer
# ---------------------------------------------------------------------------

def test_implementer_parses_reply():
    router = FakeRouter({"implementer": [reply(
        description="add route",
        gameplan="check tests",
        commands=["npm run test"],
        working_file="app.js",
    )]})
    result = ImplementerAgent(router).run(_context())

    assert result.patch_description == "add route"
    assert result.next_gameplan == "check tests"
    assert result.commands == ["npm run test"]
    assert result.working_file == "app.js"
    assert result.complete is False
    assert not result.has_patch


def test_implementer_accepts_fenced_reply():
    router = FakeRouter({"implementer": ["```json\n" + reply(complete=True) + "\n```"]})
    assert ImplementerAgent(router).run(_context()).complete is True


def test_implementer_accepts_prose_around_json():
    router = FakeRouter({"implementer": ["Here you go:\n" + reply(complete=True) + "\nDone."]})
    assert ImplementerAgent(router).run(_context()).complete is True


def test_implementer_tolerates_nulls():
    payload = {"patch": None, "patchDescription": None, "nextIteration": None, "complete": False}
    router = FakeRouter({"implementer": [json.dumps(payload)]})
    result = ImplementerAgent(router).run(_context())
    assert result.patch == ""
    assert result.commands == []
    assert result.working_file is None


@pytest.mark.parametrize("content", [
    "I could not do it.",
    "[1, 2, 3]",
    '{"patch": "", "nextIteration": {}}',
    '{"patch": "", "complete": "maybe"}',
    '{"patch": "", "complete": false, "nextIteration": {"commands": 5}}',
])
def test_implementer_malformed_reply(content):
    router = FakeRouter({"implementer": [content]})
    with pytest.raises(MalformedReplyError) as exc:
        ImplementerAgent(router).run(_context())
    assert exc.value.agent == "implementer"


def test_implementer_prompt_carries_bundle_and_prefixes():
    router = FakeRouter({"implementer": [reply(complete=True)]})
    ImplementerAgent(router).run(_context(iteration=2, max_iterations=5, allowed_prefixes=["ls", "grep"]))

    user = router.calls_for("implementer")[0][1]["content"]
    assert "Iteration 3 of 5" in user
    assert "### Goal" in user
    assert "ls, grep" in user


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------

def test_planner_parses_plan():
    router = FakeRouter({"planner": [json.dumps({
        "branch_name": "add_health_endpoint",
        "gameplan": ["Read app.js", "Add the route"],
        "planned_changes": "New GET /health route",
        "required_file_reads": ["app.js"],
        "required_file_writes": [],
    })]})
    plan = PlannerAgent(router).run(_context())

    assert plan.branch_name == "add_health_endpoint"
    assert plan.gameplan == "- Read app.js\n- Add the route"
    assert "New GET /health route" in plan.initial_gameplan
    assert plan.initial_working_file == "app.js"


def test_planner_prefers_write_over_read_for_working_file():
    router = FakeRouter({"planner": [json.dumps({
        "branch_name": "",
        "required_file_reads": ["README.md"],
        "required_file_writes": ["src/server.js"],
    })]})
    assert PlannerAgent(router).run(_context()).initial_working_file == "src/server.js"


def test_planner_malformed_reply():
    router = FakeRouter({"planner": ["not json at all"]})
    with pytest.raises(MalformedReplyError) as exc:
        PlannerAgent(router).run(_context())
    assert exc.value.agent == "planner"


def test_sanitize_branch_name():
    assert sanitize_branch_name("Add Health Endpoint!!") == "add_health_endpoint"
    assert sanitize_branch_name("feature/..weird") == "feature/weird"
    assert sanitize_branch_name("  ...  ") == ""


def test_derive_branch_name():
    assert derive_branch_name("add_health", "goal") == "gpt-pr/add_health"
    assert derive_branch_name("gpt-pr/add_health", "goal") == "gpt-pr/add_health"
    assert derive_branch_name("add_health", "goal", prefix="") == "add_health"


def test_derive_branch_name_falls_back_to_goal_slug():
    name = derive_branch_name("", "Add a health endpoint, please")
    assert re.fullmatch(r"gpt-pr/add-a-health-endpoint-please-[0-9a-f]{6}", name)

    other = derive_branch_name("!!!", "Add a health endpoint, please")
    assert other != name


# ---------------------------------------------------------------------------
# Release
# ---------------------------------------------------------------------------

def test_release_parses_reply():
    router = FakeRouter({"release": [json.dumps({
        "commit_message": "Add /health endpoint\n\nLonger body",
        "change_log": {"new_features": ["GET /health"], "bug_fixes": None},
    })]})
    context = AgentContext(goal="g", repo_path="/r", branch="gpt-pr/x", extra={"diff": "+x", "plan": "p"})
    release = ReleaseAgent(router).run(context)

    assert release.commit_message == "Add /health endpoint"
    assert release.change_log.new_features == ["GET /health"]
    assert release.change_log.bug_fixes == []
    assert not release.fallback


def test_release_falls_back_on_malformed_reply():
    router = FakeRouter({"release": ['{"change_log": {}}']})
    context = AgentContext(goal="g", repo_path="/r", branch="gpt-pr/x")
    release = ReleaseAgent(router).run(context)

    assert release.fallback
    assert release.commit_message == "gpt-pr update to gpt-pr/x"


def test_release_truncates_large_diff():
    router = FakeRouter({"release": ['{"commit_message": "x"}']})
    context = AgentContext(goal="g", repo_path="/r", branch="b", extra={"diff": "+" * 50_000})
    ReleaseAgent(router).run(context)

    user = router.calls_for("release")[0][1]["content"]
    assert "[Truncated]" in user
    assert len(user) < 20_000


def test_change_log_markdown():
    md = ChangeLog(new_features=["GET /health"]).to_markdown(title="Change Log: gpt-pr/x")
    assert md.startswith("# Change Log: gpt-pr/x")
    assert "## New Features\n- GET /health" in md
    assert "## Breaking Changes\n- None" in md
    assert "## Bug Fixes\n- None" in md


@pytest.mark.parametrize("proposed, expected", [
    ("fix/.env_loader", "fix/env_loader"),
    ("feature.lock/x.lock", "feature/x"),
    ("fix@{1}", "fix_1"),
    ("a//b", "a/b"),
    ("-leading/trailing.", "leading/trailing"),
])
def test_sanitize_branch_name_components(proposed, expected):
    assert sanitize_branch_name(proposed) == expected


@pytest.mark.parametrize("proposed", [
    "fix/.env_loader",
    "release.lock",
    "HEAD@{0}",
    "a/./b",
    "x/.lock/y",
    "Mixed Case/With Spaces?",
    "/",
])
def test_derived_branch_names_pass_git_check(proposed):
    name = derive_branch_name(proposed, "Fix the env loader")
    check = subprocess.run(["git", "check-ref-format", "--branch", name], capture_output=True, text=True)
    assert check.returncode == 0, name


def test_agent_messages():
    assert AgentMessage(role="user", content="hi").to_dict() == {"role": "user", "content": "hi"}
    assert AgentMessage(role="user", content="hi", name="planner").to_dict()["name"] == "planner"

    router = FakeRouter({"planner": ['{"branch_name": "x"}']})
    PlannerAgent(router).run(_context())
    system, user = router.calls_for("planner")[0]
    assert system == {"role": "system", "content": PlannerAgent.system_prompt}
    assert user["role"] == "user"
    assert "name" not in user
