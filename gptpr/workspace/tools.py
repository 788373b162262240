"""
gpt-pr Tool Execution

Model-requested commands pass two gates before they run:

  1. CommandGuard: prefix allow-list over the raw string.
  2. parse_command(): maps the string onto a closed vocabulary of
     operations with structured arguments. Shell control operators
     are refused here, and the resulting argv runs without a shell.
"""

from __future__ import annotations

import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger


class ToolViolationError(Exception):
    """Raised when a command is outside the allow-list or the vocabulary."""
    pass


# ---------------------------------------------------------------------------
# Prefix guard
# ---------------------------------------------------------------------------

DEFAULT_ALLOWED_PREFIXES = (
    "grep", "ls", "cat", "npm run test", "npm run lint", "git", "tail", "head", "find",
)


class CommandGuard:
    """
    Accepts a command iff its text starts with an allowed prefix.

    This is a string prefix match, not a grammar: "ls && rm -rf /" starts
    with "ls" and is accepted here. parse_command() is what refuses it.
    """

    def __init__(self, allowed_prefixes: list[str] | tuple[str, ...] = DEFAULT_ALLOWED_PREFIXES):
        self.allowed_prefixes = tuple(allowed_prefixes)

    def allows(self, command: str) -> bool:
        text = command.strip()
        return bool(text) and any(text.startswith(prefix) for prefix in self.allowed_prefixes)


# ---------------------------------------------------------------------------
# Command vocabulary
# ---------------------------------------------------------------------------

_OPERATOR_CHARS = set("();<>|&")

READ_ONLY_GIT_SUBCOMMANDS = frozenset({
    "status", "log", "diff", "show", "ls-files", "ls-tree", "grep", "blame", "rev-parse", "shortlog",
})

_FIND_FORBIDDEN = frozenset({
    "-exec", "-execdir", "-ok", "-okdir", "-delete", "-fprint", "-fprint0", "-fprintf", "-fls",
})

NPM_SCRIPTS = frozenset({"test", "lint"})

# Options that make a read-only git subcommand run a program or write a file.
# git accepts any unambiguous prefix of a long option, so these match by prefix.
_GIT_FORBIDDEN_LONG = ("open-files-in-pager", "output", "ext-diff")

# Short flags with the same effect; they may be bundled (-inO<cmd>).
_GIT_FORBIDDEN_SHORT = {"grep": "O"}


@dataclass(frozen=True)
class Command:
    """A permitted operation. `argv()` is what actually runs."""
    raw: str
    args: tuple[str, ...] = ()

    program = ""

    def argv(self) -> list[str]:
        return [self.program, *self.args]


@dataclass(frozen=True)
class Grep(Command):
    program = "grep"


@dataclass(frozen=True)
class ListDir(Command):
    program = "ls"


@dataclass(frozen=True)
class FindFiles(Command):
    program = "find"


@dataclass(frozen=True)
class ReadFile(Command):
    reader: str = "cat"

    def argv(self) -> list[str]:
        return [self.reader, *self.args]


@dataclass(frozen=True)
class Git(Command):
    subcommand: str = "status"

    def argv(self) -> list[str]:
        return ["git", "--no-pager", self.subcommand, *self.args]


@dataclass(frozen=True)
class NpmScript(Command):
    script: str = "test"

    def argv(self) -> list[str]:
        return ["npm", "run", self.script, *self.args]


def _tokenize(command: str) -> list[str]:
    lexer = shlex.shlex(command, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    try:
        return list(lexer)
    except ValueError as e:
        raise ToolViolationError(f"Cannot tokenize command {command!r}: {e}") from e


def _check_git_args(subcommand: str, args: tuple[str, ...]) -> None:
    for arg in args:
        if arg.startswith("--"):
            name = arg[2:].split("=", 1)[0]
            if name and any(option.startswith(name) for option in _GIT_FORBIDDEN_LONG):
                raise ToolViolationError(f"git option not allowed: {arg!r}")
        elif arg.startswith("-") and len(arg) > 1:
            flags = _GIT_FORBIDDEN_SHORT.get(subcommand, "")
            if any(flag in arg[1:] for flag in flags):
                raise ToolViolationError(f"git option not allowed: {arg!r}")


def parse_command(command: str) -> Command:
    """Map a raw command string onto the vocabulary or raise ToolViolationError."""
    tokens = _tokenize(command.strip())
    if not tokens:
        raise ToolViolationError("Empty command")

    for token in tokens:
        if set(token) <= _OPERATOR_CHARS or "`" in token or "$(" in token:
            raise ToolViolationError(f"Shell syntax is not allowed: {token!r} in {command!r}")

    head, rest = tokens[0], tuple(tokens[1:])

    if head == "grep":
        return Grep(raw=command, args=rest)
    if head == "ls":
        return ListDir(raw=command, args=rest)
    if head in ("cat", "head", "tail"):
        return ReadFile(raw=command, args=rest, reader=head)
    if head == "find":
        forbidden = [t for t in rest if t in _FIND_FORBIDDEN]
        if forbidden:
            raise ToolViolationError(f"find action not allowed: {forbidden[0]}")
        return FindFiles(raw=command, args=rest)
    if head == "git":
        if not rest or rest[0] not in READ_ONLY_GIT_SUBCOMMANDS:
            sub = rest[0] if rest else "(none)"
            raise ToolViolationError(f"git subcommand not allowed: {sub}")
        _check_git_args(rest[0], rest[1:])
        return Git(raw=command, args=rest[1:], subcommand=rest[0])
    if head == "npm":
        if len(rest) >= 2 and rest[0] == "run" and rest[1] in NPM_SCRIPTS:
            return NpmScript(raw=command, args=rest[2:], script=rest[1])
        raise ToolViolationError(f"npm invocation not allowed: {command!r}")

    raise ToolViolationError(f"Command not in vocabulary: {head!r}")


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

@dataclass
class ToolResult:
    command: str
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """stdout on success; stderr (falling back to stdout) otherwise."""
        if self.success:
            return self.stdout
        return self.stderr or self.stdout


@dataclass
class ToolExecutor:
    working_dir: Path
    allowed_prefixes: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_PREFIXES))
    timeout: float = 60.0
    max_output_chars: int = 8000

    def __post_init__(self) -> None:
        self.working_dir = Path(self.working_dir).resolve()
        self.guard = CommandGuard(self.allowed_prefixes)

    def execute(self, command: str) -> ToolResult:
        """Run one command. Raises ToolViolationError when either gate refuses it."""
        if not self.guard.allows(command):
            raise ToolViolationError(f"Command not in allow-list: {command!r}")

        parsed = parse_command(command)
        argv = parsed.argv()
        logger.debug(f"[TOOLS] {type(parsed).__name__}: {argv}")

        try:
            proc = subprocess.run(
                argv,
                cwd=self.working_dir,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return ToolResult(
                command=command,
                returncode=124,
                stderr=f"Timed out after {self.timeout}s",
                timed_out=True,
            )
        except FileNotFoundError:
            return ToolResult(command=command, returncode=127, stderr=f"Executable not found: {argv[0]}")

        return ToolResult(
            command=command,
            returncode=proc.returncode,
            stdout=self._truncate(proc.stdout),
            stderr=self._truncate(proc.stderr),
        )

    def run_all(self, commands: list[str]) -> dict[str, str]:
        """
        Execute permitted commands in order and map each to its output.

        Refused commands are skipped with a warning and left out of the map.
        """
        outputs: dict[str, str] = {}
        for command in commands:
            try:
                result = self.execute(command)
            except ToolViolationError as e:
                logger.warning(f"[TOOLS] Skipping command: {e}")
                continue

            if not result.success:
                logger.debug(f"[TOOLS] {command!r} exited {result.returncode}")
            outputs[command] = result.output
        return outputs

    def _truncate(self, text: str) -> str:
        if self.max_output_chars and len(text) > self.max_output_chars:
            return text[: self.max_output_chars] + f"\n... truncated ({len(text)} chars total)"
        return text
