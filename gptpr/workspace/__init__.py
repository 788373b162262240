"""
gpt-pr Workspace

Thin wrapper over git for the repository being patched. Every
operation is a plain `git` subprocess run inside the repo; the
loop is the only actor mutating the tree.
"""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

from loguru import logger


class WorkspaceError(Exception):
    pass


class DirtyRepoError(WorkspaceError):
    """Raised when the repository has uncommitted changes before a run."""
    pass


@dataclass
class PatchOutcome:
    applied: bool
    error: str = ""


_REMOTE_PATTERN = re.compile(r"github\.com[:/](?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$")


def clean_patch(text: str) -> str:
    """Strip markdown fences a model may wrap around a diff and end with a newline."""
    lines = text.strip("\n").split("\n")
    # Only the outer fence goes; fences inside the diff are context lines.
    if lines[0].strip().startswith("```"):
        lines = lines[1:]
        if lines and lines[-1].rstrip() == "```":
            lines = lines[:-1]
    cleaned = "\n".join(lines)
    return cleaned.rstrip("\n") + "\n" if cleaned.strip() else ""


def parse_github_remote(url: str) -> tuple[str, str] | None:
    """Return (owner, repo) for a GitHub remote URL, ssh or https."""
    match = _REMOTE_PATTERN.search(url.strip())
    if not match:
        return None
    return match.group("owner"), match.group("repo")


class Workspace:
    """
    The git repository a run patches, addressed in place.
    """

    def __init__(self, repo_path: Path, log_dir: str = ".gpt-pr", timeout: float = 60.0):
        self.repo_path = repo_path.resolve()
        self.log_dir = log_dir
        self.timeout = timeout

    @property
    def path(self) -> Path:
        return self.repo_path

    # -- Read-only views ---------------------------------------------------

    def status_short(self) -> str:
        return self._git("status", "--short", capture=True)

    def tree(self) -> str:
        return self._git("ls-tree", "-r", "--name-only", "HEAD", capture=True)

    def diff(self) -> str:
        """Full unified diff of all changes outside the log directory (stages them)."""
        self._git("add", "-A", "--", ".", f":(exclude){self.log_dir}", check=False)
        return self._git("diff", "--cached", capture=True, check=False)

    def current_branch(self) -> str:
        return self._git("rev-parse", "--abbrev-ref", "HEAD", capture=True).strip()

    def remote_url(self, remote: str = "origin") -> str | None:
        url = self._git("remote", "get-url", remote, capture=True, check=False).strip()
        return url or None

    def dirty_files(self) -> list[str]:
        """Uncommitted changes, ignoring the run log directory."""
        status = self._git("status", "--porcelain", capture=True)
        return [
            line for line in status.splitlines()
            if line.strip() and not line[3:].startswith(f"{self.log_dir}/")
        ]

    def ensure_clean(self) -> None:
        dirty = self.dirty_files()
        if dirty:
            preview = "\n".join(dirty[:5])
            raise DirtyRepoError(f"Repository has uncommitted changes:\n{preview}")

    def branch_exists(self, name: str) -> bool:
        res = self._git("branch", "--list", name, capture=True)
        return bool(res.strip())

    # -- Mutations ---------------------------------------------------------

    def checkout_branch(self, name: str) -> None:
        """Create and switch to `name`."""
        if self.branch_exists(name):
            raise WorkspaceError(f"Branch already exists: {name}")
        self._git("checkout", "-b", name)
        logger.info(f"[WORKSPACE] Checked out new branch {name}")

    def apply_patch(self, patch_file: Path) -> PatchOutcome:
        """
        Apply a unified diff file to the working tree.

        `git apply --check` runs first so a patch that cannot apply
        leaves the tree untouched.
        """
        patch_path = str(Path(patch_file).resolve())
        check = self._run_cmd(
            ["git", "apply", "--check", "--whitespace=fix", patch_path],
            cwd=self.repo_path,
            timeout=self.timeout,
        )
        if check.returncode != 0:
            error = (check.stderr or check.stdout).strip()
            logger.warning(f"[APPLY] Patch does not apply: {error}")
            return PatchOutcome(applied=False, error=error or "git apply --check failed")

        result = self._run_cmd(
            ["git", "apply", "--reject", "--whitespace=fix", patch_path],
            cwd=self.repo_path,
            timeout=self.timeout,
        )
        if result.returncode != 0:
            error = (result.stderr or result.stdout).strip()
            logger.warning(f"[APPLY] git apply failed: {error}")
            return PatchOutcome(applied=False, error=error or "git apply failed")

        logger.info(f"[APPLY] Applied {Path(patch_file).name}")
        return PatchOutcome(applied=True)

    def commit(self, message: str) -> str | None:
        """Stage everything outside the log directory and commit it."""
        self._git("add", "-A", "--", ".", f":(exclude){self.log_dir}")

        staged = self._git("diff", "--cached", "--name-only", capture=True)
        if not staged.strip():
            logger.info("[WORKSPACE] Nothing to commit.")
            return None

        self._git("commit", "-m", message)
        return self._git("rev-parse", "HEAD", capture=True).strip()

    def push(self, branch: str, remote: str = "origin") -> None:
        self._git("push", "-u", remote, branch)
        logger.info(f"[WORKSPACE] Pushed {branch} to {remote}")

    # -- Plumbing ----------------------------------------------------------

    def _git(self, *args: str, check: bool = True, capture: bool = False) -> str:
        result = self._run_cmd(["git", *args], cwd=self.repo_path, timeout=self.timeout)
        if check and result.returncode != 0:
            raise WorkspaceError(f"Git failed: {' '.join(['git', *args])}\n{result.stderr}")
        return result.stdout if capture else ""

    @staticmethod
    def _run_cmd(cmd: list[str], cwd: Path, timeout: float = 60.0) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise WorkspaceError(f"Timed out after {timeout}s: {' '.join(cmd)}") from e
