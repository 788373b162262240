"""
Run state for the iteration loop.

Both records are frozen: the controller threads an IterationState through
the loop and every step returns a new one.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LoopPhase(str, Enum):
    RUNNING = "running"
    APPLYING_PATCH = "applying_patch"
    ADVANCING = "advancing"
    DONE = "done"


class NextIteration(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    gameplan: str = ""
    commands: list[str] = Field(default_factory=list)
    working_file: str | None = Field(default=None, alias="workingFile")

    @field_validator("gameplan", mode="before")
    @classmethod
    def _none_gameplan(cls, value):
        return "" if value is None else value

    @field_validator("commands", mode="before")
    @classmethod
    def _none_commands(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        return value

    @field_validator("working_file", mode="before")
    @classmethod
    def _blank_working_file(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class IterationResult(BaseModel):
    """One validated model reply from the iteration loop."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    patch: str = ""
    patch_description: str = Field(default="", alias="patchDescription")
    next_iteration: NextIteration = Field(default_factory=NextIteration, alias="nextIteration")
    complete: bool

    @field_validator("patch", "patch_description", mode="before")
    @classmethod
    def _none_text(cls, value):
        return "" if value is None else value

    @field_validator("next_iteration", mode="before")
    @classmethod
    def _none_next(cls, value):
        return {} if value is None else value

    @property
    def next_gameplan(self) -> str:
        return self.next_iteration.gameplan

    @property
    def commands(self) -> list[str]:
        return self.next_iteration.commands

    @property
    def working_file(self) -> str | None:
        return self.next_iteration.working_file

    @property
    def has_patch(self) -> bool:
        return bool(self.patch.strip())


class IterationState(BaseModel):
    """Working memory carried from one iteration to the next."""

    model_config = ConfigDict(frozen=True)

    goal: str
    gameplan: str
    command_outputs: dict[str, str] = Field(default_factory=dict)
    working_file: str | None = None
    last_patch_error: str | None = None
    iteration: int = 0

    def advance(
        self,
        result: IterationResult,
        command_outputs: dict[str, str],
        patch_error: str | None = None,
    ) -> "IterationState":
        """Return the state for the next iteration.

        Command outputs are replaced, never merged. An empty next gameplan
        keeps the current one; a missing working file keeps the current one.
        """
        return self.model_copy(
            update={
                "gameplan": result.next_gameplan or self.gameplan,
                "command_outputs": dict(command_outputs),
                "working_file": result.working_file or self.working_file,
                "last_patch_error": patch_error,
                "iteration": self.iteration + 1,
            }
        )
