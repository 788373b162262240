"""
Per-run audit trail.

Layout under the repository:

    <log_dir>/<branch>/plan.json
    <log_dir>/<branch>/events.jsonl
    <log_dir>/<branch>/CHANGE_LOG.md
    <log_dir>/<branch>/<iteration>/patch
    <log_dir>/<branch>/<iteration>/nextGameplan.md
    <log_dir>/<branch>/<iteration>/response.json
    <log_dir>/<branch>/<iteration>/out.log
    <log_dir>/<branch>/<iteration>/complete

Nothing here is read back by the program.
"""

from __future__ import annotations

import json
from pathlib import Path

from gptpr.context import format_command_outputs
from gptpr.state import IterationResult


class RunLog:
    def __init__(self, repo_path: Path, log_dir: str, branch: str):
        self.branch_dir = Path(repo_path) / log_dir / branch

    @property
    def events_path(self) -> Path:
        return self.branch_dir / "events.jsonl"

    @property
    def change_log_path(self) -> Path:
        return self.branch_dir / "CHANGE_LOG.md"

    def iteration_dir(self, iteration: int) -> Path:
        path = self.branch_dir / str(iteration)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _write(self, path: Path, text: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    def write_plan(self, plan: dict) -> Path:
        return self._write(self.branch_dir / "plan.json", json.dumps(plan, indent=2))

    def write_patch(self, iteration: int, patch: str) -> Path:
        return self._write(self.iteration_dir(iteration) / "patch", patch)

    def write_response(self, iteration: int, result: IterationResult) -> list[Path]:
        """Gameplan and raw reply, written only when a next gameplan came back."""
        if not result.next_gameplan.strip():
            return []
        folder = self.iteration_dir(iteration)
        return [
            self._write(folder / "nextGameplan.md", result.next_gameplan),
            self._write(
                folder / "response.json",
                result.model_dump_json(by_alias=True, indent=2),
            ),
        ]

    def write_command_output(self, iteration: int, outputs: dict[str, str]) -> Path | None:
        if not outputs:
            return None
        return self._write(self.iteration_dir(iteration) / "out.log", format_command_outputs(outputs) + "\n")

    def mark_complete(self, iteration: int, description: str = "") -> Path:
        return self._write(self.iteration_dir(iteration) / "complete", description or "complete\n")

    def write_change_log(self, markdown: str) -> Path:
        return self._write(self.change_log_path, markdown)
