import json
import subprocess
from pathlib import Path

import pytest

from gptpr.router import BudgetTracker, RouterResponse

APP_JS = "\n".join([
    'const express = require("express");',
    "const app = express();",
    "",
    'app.get("/", (req, res) => {',
    '  res.send("hello");',
    "});",
    "",
    "module.exports = app;",
    "",
])

HEALTH_PATCH = "\n".join([
    "diff --git a/app.js b/app.js",
    "--- a/app.js",
    "+++ b/app.js",
    '@@ -5,4 +5,8 @@ app.get("/", (req, res) => {',
    '   res.send("hello");',
    " });",
    " ",
    '+app.get("/health", (req, res) => {',
    '+  res.json({ status: "ok" });',
    "+});",
    "+",
    " module.exports = app;",
    "",
])


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True, text=True)
    return result.stdout


@pytest.fixture
def git_repo(tmp_path):
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    git(repo, "config", "user.email", "dev@example.com")
    git(repo, "config", "user.name", "Dev")
    git(repo, "config", "commit.gpgsign", "false")
    (repo / "README.md").write_text("# Demo\n\nA tiny express app.\n")
    (repo / "app.js").write_text(APP_JS)
    git(repo, "add", "-A")
    git(repo, "commit", "-m", "initial")
    return repo


def reply(patch="", description="", gameplan="", commands=None, working_file=None, complete=False) -> str:
    return json.dumps({
        "patch": patch,
        "patchDescription": description,
        "nextIteration": {
            "gameplan": gameplan,
            "commands": commands or [],
            "workingFile": working_file,
        },
        "complete": complete,
    })


class FakeRouter:
    """Scripted stand-in for Router: one reply queue per role, the last reply repeats."""

    def __init__(self, replies: dict[str, list[str]]):
        self.replies = {role: list(items) for role, items in replies.items()}
        self.calls: list[tuple[str, list[dict]]] = []
        self.budget = BudgetTracker()

    def complete(self, role, messages, **kwargs):
        self.calls.append((role, messages))
        queue = self.replies.get(role)
        if not queue:
            raise AssertionError(f"Unexpected {role} call")
        content = queue.pop(0) if len(queue) > 1 else queue[0]
        self.budget.usage.call_count += 1
        return RouterResponse(content=content, model=f"fake/{role}")

    def calls_for(self, role: str) -> list[list[dict]]:
        return [messages for r, messages in self.calls if r == role]
