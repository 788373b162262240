"""
Implementer — proposes one patch per iteration.

Reads the context bundle, answers with a unified diff, a short
description, what to look at next, and whether the goal is met.
"""

from __future__ import annotations

from loguru import logger
from pydantic import ValidationError

from gptpr.agents import AgentContext, BaseAgent, MalformedReplyError
from gptpr.router import RouterResponse
from gptpr.state import IterationResult


class ImplementerAgent(BaseAgent):
    role = "implementer"

    system_prompt = """You are a senior software engineer midway through a pull request.
You work in iterations. Each iteration you see the goal, your current gameplan,
the repository state, the output of the commands you asked for last time,
and the file you are focused on.

You MUST respond with a valid JSON object ONLY. No markdown, no commentary.

Output schema:
{
  "patch": "unified diff (git format, paths prefixed a/ and b/) or empty string",
  "patchDescription": "what the patch does",
  "nextIteration": {
    "gameplan": "what to do next iteration",
    "commands": ["read-only commands whose output you need next"],
    "workingFile": "path/of/the/file/to/focus/on or null"
  },
  "complete": false
}

Rules:
- Patches must apply cleanly with `git apply`: exact context lines, at least 3 of them.
- Only patch files whose current content you have seen.
- Set "complete" to true only when the goal is fully met by the patches applied so far
  plus the one in this reply.
- Commands must start with one of the allowed prefixes and must not chain or redirect.
"""

    def run(self, context: AgentContext, **kwargs) -> IterationResult:
        kwargs.setdefault("response_format", {"type": "json_object"})
        return super().run(context, **kwargs)

    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        iteration = context.extra.get("iteration", 0)
        max_iterations = context.extra.get("max_iterations", "?")
        allowed = context.extra.get("allowed_prefixes", [])

        user_content = f"""Iteration {iteration + 1} of {max_iterations}. Branch: {context.branch}

{context.bundle}

Allowed command prefixes: {", ".join(allowed) if allowed else "(none)"}

Respond with the JSON object for this iteration."""

        return [self._system_msg(), self._user_msg(user_content)]

    def parse_response(self, response: RouterResponse, context: AgentContext) -> IterationResult:
        data = self._load_json(response.content)
        try:
            result = IterationResult.model_validate(data)
        except ValidationError as e:
            logger.error(f"[IMPLEMENTER] Reply failed validation: {e}")
            raise MalformedReplyError(self.role, f"Reply failed validation: {e}", raw=response.content[:1000]) from e

        logger.info(
            f"[IMPLEMENTER] patch={'yes' if result.has_patch else 'no'}, "
            f"commands={len(result.commands)}, complete={result.complete}"
        )
        return result
