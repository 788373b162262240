"""
gpt-pr Agent Roster

Each agent is:
  - A system prompt
  - A structured input template
  - A constrained output schema

Agents are stateless. Run state lives in the controller.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from typing import Any

from loguru import logger
from pydantic import BaseModel

from gptpr.router import AgentMessage, Router, RouterResponse


class MalformedReplyError(Exception):
    """The model reply could not be parsed into the expected schema."""

    def __init__(self, agent: str, message: str, raw: str = ""):
        super().__init__(f"[{agent}] {message}")
        self.agent = agent
        self.raw = raw


class AgentContext(BaseModel):
    """Context passed to every agent invocation."""
    goal: str
    repo_path: str
    bundle: str = ""  # prompt-ready repository context
    branch: str = ""
    extra: dict[str, Any] = {}


class BaseAgent(ABC):
    """
    Base class for gpt-pr agents.

    Subclasses define:
      - role: str — maps to router model
      - system_prompt: str — agent personality + constraints
      - build_messages() — constructs the chat messages
      - parse_response() — extracts structured output
    """

    role: str = "unknown"
    system_prompt: str = "You are a helpful assistant."

    def __init__(self, router: Router):
        self.router = router

    def run(self, context: AgentContext, **kwargs) -> Any:
        """Execute the agent: build messages → call model → parse."""
        messages = self.build_messages(context)
        response = self.router.complete(
            role=self.role,
            messages=messages,
            **kwargs,
        )
        return self.parse_response(response, context)

    @abstractmethod
    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        """Build the message list for the LLM call."""
        ...

    @abstractmethod
    def parse_response(self, response: RouterResponse, context: AgentContext) -> Any:
        """Parse the LLM response into structured output."""
        ...

    def _system_msg(self) -> dict[str, str]:
        return AgentMessage(role="system", content=self.system_prompt).to_dict()

    def _user_msg(self, content: str) -> dict[str, str]:
        return AgentMessage(role="user", content=content).to_dict()

    def _load_json(self, content: str) -> dict[str, Any]:
        """
        Parse a JSON object out of a reply.

        Tolerates markdown fences and prose around a single top-level
        object; anything else raises MalformedReplyError.
        """
        text = strip_markdown(content)
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            extracted = extract_outer_json(text)
            if extracted is None:
                raise MalformedReplyError(self.role, "Reply contains no JSON object", raw=content[:1000])
            try:
                data = json.loads(extracted)
            except json.JSONDecodeError as e:
                logger.debug(f"[{self.role.upper()}] Raw response: {content[:500]}")
                raise MalformedReplyError(self.role, f"Invalid JSON: {e}", raw=content[:1000]) from e

        if not isinstance(data, dict):
            raise MalformedReplyError(self.role, "Reply JSON is not an object", raw=content[:1000])
        return data


def strip_markdown(content: str) -> str:
    """Remove ``` or ```json wrappers."""
    content = content.strip()
    if content.startswith("```"):
        content = re.sub(r"^```(?:json)?\s*|\s*```$", "", content)
    return content.strip()


def extract_outer_json(text: str) -> str | None:
    """Extract the first top-level JSON object using brace tracking, string-aware."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]

    return None
