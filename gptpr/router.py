"""
gpt-pr Router — Vendor-Agnostic Model Access

Routes agent calls through LiteLLM so agents never know
which vendor is backing them. Handles budget tracking,
rate-limit pacing, retries, and structured logging.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import litellm
from loguru import logger
from pydantic import BaseModel
from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from gptpr.config_loader import GptPrConfig


class BudgetExceededError(Exception):
    pass


# ---------------------------------------------------------------------------
# Usage Tracking
# ---------------------------------------------------------------------------

@dataclass
class UsageRecord:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    call_count: int = 0


@dataclass
class BudgetTracker:
    """Tracks token + dollar spend per run."""
    max_tokens: int = 400_000
    max_dollars: float = 10.0
    usage: UsageRecord = field(default_factory=UsageRecord)

    @property
    def tokens_remaining(self) -> int:
        return max(0, self.max_tokens - self.usage.total_tokens)

    @property
    def dollars_remaining(self) -> float:
        return max(0.0, self.max_dollars - self.usage.estimated_cost)

    @property
    def budget_exceeded(self) -> bool:
        return self.usage.total_tokens >= self.max_tokens or self.usage.estimated_cost >= self.max_dollars

    def record(self, response: Any) -> None:
        """Record usage from a LiteLLM response.

        Token counts come from ``response.usage``; the dollar estimate comes
        from LiteLLM's cost table and is skipped for models it does not price.
        """
        usage = getattr(response, "usage", None)
        if usage:
            self.usage.prompt_tokens += getattr(usage, "prompt_tokens", 0) or 0
            self.usage.completion_tokens += getattr(usage, "completion_tokens", 0) or 0
            self.usage.total_tokens += getattr(usage, "total_tokens", 0) or 0

        try:
            self.usage.estimated_cost += litellm.completion_cost(completion_response=response)
        except Exception as e:
            logger.debug(f"[ROUTER] No cost estimate: {e}")

        self.usage.call_count += 1

    def summary(self) -> dict:
        return {
            "total_tokens": self.usage.total_tokens,
            "estimated_cost": round(self.usage.estimated_cost, 4),
            "call_count": self.usage.call_count,
            "tokens_remaining": self.tokens_remaining,
            "dollars_remaining": round(self.dollars_remaining, 4),
        }


# ---------------------------------------------------------------------------
# Model capability helpers
# ---------------------------------------------------------------------------

def _is_gpt5_model(model: str) -> bool:
    """GPT-5 family models have restricted parameter support."""
    normalized = model.lower().replace("openai/", "")
    return normalized.startswith("gpt-5")


def _is_o_series_model(model: str) -> bool:
    """OpenAI o-series reasoning models don't support temperature."""
    normalized = model.lower().replace("openai/", "")
    return normalized.startswith(("o1", "o3", "o4"))


def _build_kwargs(
    model: str,
    messages: list[dict[str, str]],
    temperature: float,
    max_tokens: int,
    response_format: dict | None,
    n: int = 1,
    timeout: float | None = None,
) -> dict[str, Any]:
    """
    Build LiteLLM kwargs with per-model param filtering.
    Different model families support different parameters.
    """
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
        "n": n,
    }

    if not _is_gpt5_model(model) and not _is_o_series_model(model):
        kwargs["temperature"] = temperature

    if response_format:
        kwargs["response_format"] = response_format

    if timeout:
        kwargs["timeout"] = timeout

    return kwargs


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class AgentMessage(BaseModel):
    role: str  # "system" | "user" | "assistant"
    content: str
    name: str | None = None

    def to_dict(self) -> dict[str, str]:
        return self.model_dump(exclude_none=True)


class RouterResponse(BaseModel):
    content: str
    model: str
    tokens_used: int = 0
    cost: float = 0.0
    latency_ms: int = 0


class Router:
    """
    Vendor-agnostic model router.

    Agents call `router.complete(role, messages)`.
    The router resolves the model, enforces budget, and returns the
    first choice's content.
    """

    def __init__(self, config: GptPrConfig):
        self.config = config
        self.budget = BudgetTracker(
            max_tokens=config.limits.max_tokens_per_run,
            max_dollars=config.limits.max_dollars_per_run,
        )
        self._role_model_map = {
            "planner": config.routing.planner,
            "implementer": config.routing.implementer,
            "release": config.routing.release,
        }

        litellm.suppress_debug_info = True

    def resolve_model(self, role: str) -> str:
        """Resolve agent role to a specific model string."""
        model = self._role_model_map.get(role)
        if not model:
            raise ValueError(f"Unknown agent role: {role}. Known: {list(self._role_model_map)}")
        return model

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        retry=retry_if_not_exception_type((BudgetExceededError, ValueError)),
        reraise=True,
    )
    def complete(
        self,
        role: str,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
        response_format: dict | None = None,
        n: int = 1,
    ) -> RouterResponse:
        """Send a completion request through LiteLLM.

        Args:
            role: Agent role name (planner, implementer, release).
            messages: Chat messages [{"role": ..., "content": ..., "name": ...}].
            temperature: Sampling temperature. Defaults to the configured value
                and is dropped for models that don't support it.
            max_tokens: Max response tokens. Defaults to the configured value.
            response_format: Optional structured-output hint, e.g. {"type": "json_object"}.
            n: Sample count. Only the first choice is used.

        Raises:
            BudgetExceededError: If the run's token or dollar budget is spent.
        """
        if self.budget.budget_exceeded:
            raise BudgetExceededError(f"Budget exceeded: {self.budget.summary()}")

        model = self.resolve_model(role)
        routing = self.config.routing

        if routing.request_delay_seconds > 0:
            time.sleep(routing.request_delay_seconds)

        start = time.monotonic()
        logger.debug(f"[ROUTER] {role} → {model} ({len(messages)} messages)")

        kwargs = _build_kwargs(
            model,
            messages,
            routing.temperature if temperature is None else temperature,
            max_tokens or routing.max_tokens,
            response_format,
            n=n,
            timeout=routing.timeout_seconds,
        )

        try:
            response = litellm.completion(**kwargs)
        except Exception as e:
            logger.error(f"[ROUTER] {role} request to {model} failed: {e}")
            raise
        elapsed_ms = int((time.monotonic() - start) * 1000)

        self.budget.record(response)

        content = response.choices[0].message.content or ""

        logger.debug(
            f"[ROUTER] {role} complete — "
            f"{self.budget.usage.total_tokens} tokens, "
            f"${self.budget.usage.estimated_cost:.4f}, "
            f"{elapsed_ms}ms"
        )

        usage = getattr(response, "usage", None)
        return RouterResponse(
            content=content,
            model=model,
            tokens_used=getattr(usage, "total_tokens", 0) or 0,
            cost=self.budget.usage.estimated_cost,
            latency_ms=elapsed_ms,
        )
