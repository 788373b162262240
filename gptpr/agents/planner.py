"""
Planner — names the branch and drafts the opening gameplan.

One call per run. Never writes code.
"""

from __future__ import annotations

import re
import secrets

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from gptpr.agents import AgentContext, BaseAgent, MalformedReplyError
from gptpr.router import RouterResponse


# ---------------------------------------------------------------------------
# Output Schema
# ---------------------------------------------------------------------------

class Plan(BaseModel):
    branch_name: str = ""
    gameplan: str = ""
    planned_changes: str = ""
    required_file_reads: list[str] = Field(default_factory=list)
    required_file_writes: list[str] = Field(default_factory=list)

    @field_validator("branch_name", "gameplan", "planned_changes", mode="before")
    @classmethod
    def _text(cls, value):
        if value is None:
            return ""
        if isinstance(value, list):
            return "\n".join(f"- {item}" for item in value)
        return value

    @field_validator("required_file_reads", "required_file_writes", mode="before")
    @classmethod
    def _paths(cls, value):
        return [] if value is None else value

    @property
    def initial_gameplan(self) -> str:
        return "\n\n".join(part for part in (self.gameplan, self.planned_changes) if part.strip())

    @property
    def initial_working_file(self) -> str | None:
        for path in [*self.required_file_writes, *self.required_file_reads]:
            if path.strip():
                return path.strip()
        return None


# ---------------------------------------------------------------------------
# Branch naming
# ---------------------------------------------------------------------------

_MAX_BRANCH_CHARS = 60


def sanitize_branch_name(name: str) -> str:
    """Reduce a model-proposed name to characters git accepts in a ref."""
    cleaned = re.sub(r"[^A-Za-z0-9._/-]+", "_", name.strip()).lower()
    cleaned = re.sub(r"\.{2,}", "_", cleaned)[:_MAX_BRANCH_CHARS]

    # git-check-ref-format: no component may start with "." or end with
    # ".lock"; a branch may not start with "-"; empty components collapse.
    components = []
    for part in cleaned.split("/"):
        part = part.strip("._-")
        while part.endswith(".lock"):
            part = part[: -len(".lock")].rstrip("._-")
        if part:
            components.append(part)
    return "/".join(components)


def fallback_branch_name(goal: str) -> str:
    words = re.findall(r"[a-z0-9]+", goal.lower())[:5]
    slug = "-".join(words) or "update"
    return f"{slug[:40]}-{secrets.token_hex(3)}"


def derive_branch_name(proposed: str, goal: str, prefix: str = "gpt-pr/") -> str:
    """
    Model-proposed name when usable, otherwise a goal slug with a random suffix.
    """
    name = sanitize_branch_name(proposed) if proposed else ""
    if not name:
        name = fallback_branch_name(goal)
        logger.info(f"[PLANNER] No usable branch name from model; using {name}")
    if prefix and not name.startswith(prefix):
        name = f"{prefix}{name}"
    return name


# ---------------------------------------------------------------------------
# Agent Implementation
# ---------------------------------------------------------------------------

class PlannerAgent(BaseAgent):
    role = "planner"

    system_prompt = """You are a senior software engineer preparing a pull request.
Review the goal, git status, and git tree, and plan the work.

You MUST respond with a valid JSON object ONLY. No markdown, no commentary.

Output schema:
{
  "branch_name": "concise_snake_case_name_30_to_40_chars",
  "gameplan": "Short-term plan for the first iteration",
  "planned_changes": "Description of the overall changes",
  "required_file_reads": ["path/to/file"],
  "required_file_writes": ["path/to/file"]
}

Rules:
- Use paths exactly as they appear in the git tree.
- Keep the gameplan actionable: what to inspect or change first.
- Never suggest changes outside the goal's scope.
"""

    def run(self, context: AgentContext, **kwargs) -> Plan:
        kwargs.setdefault("response_format", {"type": "json_object"})
        return super().run(context, **kwargs)

    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        user_content = f"""Goal: {context.goal}

Repository: {context.repo_path}

{context.bundle}

Produce your plan as JSON."""

        return [self._system_msg(), self._user_msg(user_content)]

    def parse_response(self, response: RouterResponse, context: AgentContext) -> Plan:
        data = self._load_json(response.content)
        try:
            plan = Plan(**data)
        except ValidationError as e:
            logger.error(f"[PLANNER] Plan failed validation: {e}")
            raise MalformedReplyError(self.role, f"Plan failed validation: {e}", raw=response.content[:1000]) from e

        logger.info(
            f"[PLANNER] Plan ready — branch={plan.branch_name or '?'}, "
            f"reads={len(plan.required_file_reads)}, writes={len(plan.required_file_writes)}"
        )
        return plan
