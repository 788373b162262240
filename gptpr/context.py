"""
Context Gatherer — builds the prompt bundle for each iteration.

Pure string assembly over the workspace: README, git status, tracked
tree, last command outputs, last patch error, and the working file.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from gptpr.state import IterationState
from gptpr.workspace import Workspace


class ContextError(Exception):
    """Raised when a file the bundle needs cannot be read."""
    pass


def read_text_limited(path: Path, max_lines: int) -> str:
    lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    if max_lines and len(lines) > max_lines:
        return "\n".join(lines[:max_lines]) + f"\n\n... truncated ({len(lines)} lines total)"
    return "\n".join(lines)


def format_command_outputs(command_outputs: dict[str, str]) -> str:
    if not command_outputs:
        return "(no commands were run)"
    blocks = []
    for command, output in command_outputs.items():
        body = output.rstrip() or "(no output)"
        blocks.append(f"$ {command}\n{body}")
    return "\n\n".join(blocks)


class ContextGatherer:
    def __init__(self, workspace: Workspace, readme: str = "README.md", max_file_lines: int = 2000):
        self.workspace = workspace
        self.readme = readme
        self.max_file_lines = max_file_lines

    def read_readme(self) -> str | None:
        path = self.workspace.path / self.readme
        if not path.is_file():
            logger.warning(f"[CONTEXT] No {self.readme} in {self.workspace.path}")
            return None
        return read_text_limited(path, self.max_file_lines)

    def read_working_file(self, working_file: str) -> str:
        path = self.workspace.path / working_file
        if not path.is_file():
            raise ContextError(f"Working file not found: {working_file}")
        return read_text_limited(path, self.max_file_lines)

    def gather(self, state: IterationState) -> str:
        """Return the markdown bundle for `state`."""
        sections = [
            ("Goal", state.goal),
            ("Gameplan", state.gameplan),
        ]

        readme = self.read_readme()
        if readme is not None:
            sections.append((f"README ({self.readme})", readme))

        sections.append(("Git Status", self.workspace.status_short().rstrip() or "(clean)"))
        sections.append(("Git Tree", self.workspace.tree().rstrip()))
        sections.append(("Command Output", format_command_outputs(state.command_outputs)))

        if state.last_patch_error:
            sections.append(("Last Patch Error", state.last_patch_error))

        if state.working_file:
            content = self.read_working_file(state.working_file)
            sections.append((f"Working File ({state.working_file})", content))

        return "\n\n".join(f"### {title}\n{body}" for title, body in sections)
