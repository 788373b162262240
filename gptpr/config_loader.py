"""
Configuration loader for gpt-pr.
Merges defaults with per-repo .gpt-pr/config.yaml overrides and environment.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class RoutingConfig(BaseModel):
    planner: str = "gpt-4o"
    implementer: str = "gpt-4o"
    release: str = "gpt-4o-mini"
    temperature: float = 0.2
    max_tokens: int = 4096
    request_delay_seconds: float = 0.0
    timeout_seconds: float = 120.0


class LimitsConfig(BaseModel):
    max_tokens_per_run: int = 400_000
    max_dollars_per_run: float = 10.0


class LoopConfig(BaseModel):
    max_iterations: int = Field(default=20, ge=1)
    seed_gameplan: str = (
        "Explore the repository to find the files relevant to the goal, "
        "then make the smallest change that moves toward it."
    )


class CommandsConfig(BaseModel):
    allowed_prefixes: list[str] = Field(
        default_factory=lambda: [
            "grep", "ls", "cat", "npm run test", "npm run lint", "git", "tail", "head", "find",
        ]
    )
    timeout_seconds: float = 60.0
    max_output_chars: int = 8000


class ContextConfig(BaseModel):
    readme: str = "README.md"
    max_file_lines: int = 2000


class WorkspaceConfig(BaseModel):
    log_dir: str = ".gpt-pr"
    branch_prefix: str = "gpt-pr/"
    require_clean: bool = True


class GitHubConfig(BaseModel):
    api_url: str = "https://api.github.com"
    token: str | None = Field(default=None, repr=False)
    owner: str | None = None
    repo: str | None = None
    base_branch: str = "main"
    push: bool = False


class InterventionConfig(BaseModel):
    pause_after_plan: bool = False
    pause_before_pr: bool = True


class GptPrConfig(BaseModel):
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    intervention: InterventionConfig = Field(default_factory=InterventionConfig)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}

    model = os.environ.get("GPTPR_MODEL")
    if model:
        overrides["routing"] = {"planner": model, "implementer": model, "release": model}

    max_iterations = os.environ.get("GPTPR_MAX_ITERATIONS")
    if max_iterations and max_iterations.strip().isdigit():
        overrides["loop"] = {"max_iterations": int(max_iterations)}

    token = os.environ.get("GITHUB_ACCESS_TOKEN") or os.environ.get("GITHUB_TOKEN")
    if token:
        overrides["github"] = {"token": token}

    return overrides


def load_config(repo_path: Path | None = None) -> GptPrConfig:
    """
    Load config by merging:
      1. Built-in defaults (gptpr/config.yaml)
      2. Repo-level overrides (<repo>/.gpt-pr/config.yaml)
      3. Environment variable overrides
    """
    # 1. Built-in defaults
    with open(_DEFAULT_CONFIG_PATH, "r") as f:
        base: dict[str, Any] = yaml.safe_load(f) or {}

    # 2. Repo overrides
    if repo_path:
        repo_config = repo_path / ".gpt-pr" / "config.yaml"
        if repo_config.exists():
            with open(repo_config, "r") as f:
                overrides: dict[str, Any] = yaml.safe_load(f) or {}
            base = _deep_merge(base, overrides)

    # 3. Env overrides. Provider keys are read by LiteLLM directly.
    base = _deep_merge(base, _env_overrides())
    return GptPrConfig(**base)


def validate_api_keys() -> dict[str, bool]:
    """Check which API keys are available."""
    return {
        "OPENAI_API_KEY":      bool(os.environ.get("OPENAI_API_KEY")),
        "ANTHROPIC_API_KEY":   bool(os.environ.get("ANTHROPIC_API_KEY")),
        "GEMINI_API_KEY":      bool(os.environ.get("GEMINI_API_KEY")),
        "GITHUB_ACCESS_TOKEN": bool(
            os.environ.get("GITHUB_ACCESS_TOKEN") or os.environ.get("GITHUB_TOKEN")
        ),
    }
