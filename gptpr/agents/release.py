"""
Release — writes the commit message and the change log.

Runs once, after the loop, over the accumulated diff. A bad reply
never blocks the commit: it falls back to a generic message.
"""

from __future__ import annotations

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from gptpr.agents import AgentContext, BaseAgent, MalformedReplyError
from gptpr.router import RouterResponse

_MAX_DIFF_CHARS = 12000


class ChangeLog(BaseModel):
    breaking_changes: list[str] = Field(default_factory=list)
    new_features: list[str] = Field(default_factory=list)
    bug_fixes: list[str] = Field(default_factory=list)

    @field_validator("breaking_changes", "new_features", "bug_fixes", mode="before")
    @classmethod
    def _listify(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        return value

    def to_markdown(self, title: str = "Change Log") -> str:
        out = [f"# {title}", ""]
        for heading, items in (
            ("Breaking Changes", self.breaking_changes),
            ("New Features", self.new_features),
            ("Bug Fixes", self.bug_fixes),
        ):
            out.append(f"## {heading}")
            if items:
                out.extend(f"- {item}" for item in items)
            else:
                out.append("- None")
            out.append("")
        return "\n".join(out)


class Release(BaseModel):
    commit_message: str
    change_log: ChangeLog = Field(default_factory=ChangeLog)
    fallback: bool = False

    @field_validator("commit_message")
    @classmethod
    def _one_line(cls, value: str) -> str:
        first = value.strip().splitlines()[0].strip() if value.strip() else ""
        if not first:
            raise ValueError("commit_message is empty")
        return first

    @classmethod
    def default(cls, branch: str) -> "Release":
        return cls(commit_message=f"gpt-pr update to {branch}", fallback=True)


class ReleaseAgent(BaseAgent):
    role = "release"

    system_prompt = """You write commit messages and change logs for pull requests.

You MUST respond with a valid JSON object ONLY. No markdown, no commentary.

Output schema:
{
  "commit_message": "one line, imperative mood, under 72 characters",
  "change_log": {
    "breaking_changes": ["..."],
    "new_features": ["..."],
    "bug_fixes": ["..."]
  }
}

Base both strictly on the diff. Empty lists are fine.
"""

    def run(self, context: AgentContext, **kwargs) -> Release:
        kwargs.setdefault("response_format", {"type": "json_object"})
        try:
            return super().run(context, **kwargs)
        except MalformedReplyError as e:
            logger.warning(f"[RELEASE] {e}. Falling back to default commit message.")
            return Release.default(context.branch)

    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        diff = context.extra.get("diff", "")
        if len(diff) > _MAX_DIFF_CHARS:
            diff = diff[:_MAX_DIFF_CHARS] + "\n... [Truncated]"

        user_content = f"""Goal: {context.goal}
Branch: {context.branch}

Plan:
{context.extra.get("plan", "N/A")}

Diff:
{diff or "(empty diff)"}

Write the commit message and change log as JSON."""

        return [self._system_msg(), self._user_msg(user_content)]

    def parse_response(self, response: RouterResponse, context: AgentContext) -> Release:
        data = self._load_json(response.content)
        try:
            release = Release(**data)
        except (ValidationError, TypeError) as e:
            raise MalformedReplyError(self.role, f"Release failed validation: {e}", raw=response.content[:1000]) from e

        logger.info(f"[RELEASE] Commit message: {release.commit_message}")
        return release
