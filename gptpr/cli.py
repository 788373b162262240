"""
gpt-pr CLI — The Interface

  gptpr run "add a /health endpoint" --repo <path>   (one goal, one branch)
  gptpr status                                       (config + API keys)
  gptpr init <path>                                  (bootstrap .gpt-pr in a repo)
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.table import Table

from gptpr.identity import __codename__, __tagline__, __version__, BANNER
from gptpr.config_loader import load_config, validate_api_keys
from gptpr.controller import FAILED_STATUSES, Controller

# Load .env from current directory or home
load_dotenv()
load_dotenv(Path.home() / ".gpt-pr" / ".env")

app = typer.Typer(
    name="gptpr",
    help=f"{__codename__} — {__tagline__}\nIterative LLM patches, shipped as a pull request.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    pass


def _print_banner():
    console.print(f"[bright_green]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} — {__tagline__}[/]\n")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def run(
    goal: Optional[str] = typer.Argument(None, help="What the pull request should achieve"),
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Path to the target repository"),
    max_iterations: Optional[int] = typer.Option(None, "--max-iterations", "-n", min=1, help="Iteration ceiling"),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Use this branch name instead of the planner's"),
    push: Optional[bool] = typer.Option(None, "--push/--no-push", help="Push the branch and open a PR"),
    base: Optional[str] = typer.Option(None, "--base", help="Base branch for the PR"),
    auto_approve: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompts"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Plan, iterate and commit toward GOAL on a new branch."""
    _print_banner()
    _configure_logging(verbose)

    repo = repo.resolve()
    if not (repo / ".git").exists():
        console.print(f"[red]Not a git repository: {repo}[/]")
        raise typer.Exit(1)

    if not goal:
        console.print("[bold]What should gpt-pr do?[/]")
        goal = typer.prompt(">>")
    if not goal.strip():
        console.print("[red]No goal provided.[/]")
        raise typer.Exit(1)

    config = load_config(repo)
    if base:
        config.github.base_branch = base

    controller = Controller(
        repo_path=repo,
        config=config,
        auto_approve=auto_approve,
        push=push,
        branch=branch,
        max_iterations=max_iterations,
    )

    result = controller.run(goal.strip())

    status = result.get("status", "unknown")
    status_color = {
        "pr_created": "green",
        "committed": "yellow",
        "no_changes": "yellow",
        "interrupted": "yellow",
    }.get(status, "red")

    console.print(f"\n[bold {status_color}]Status: {status}[/]")
    if result.get("branch"):
        console.print(f"  Branch:     {result['branch']}")
    console.print(f"  Iterations: {result.get('iterations', 0)}")
    if result.get("pr_url"):
        console.print(f"  PR:         {result['pr_url']}")

    if status in FAILED_STATUSES:
        raise typer.Exit(1)


@app.command()
def status(
    repo: Optional[Path] = typer.Option(None, "--repo", "-r"),
):
    """Check gpt-pr configuration and readiness."""
    _print_banner()

    keys = validate_api_keys()
    key_table = Table(title="API Keys", border_style="cyan")
    key_table.add_column("Key")
    key_table.add_column("Status")

    for key, available in keys.items():
        status_str = "[green]✓ Available[/]" if available else "[red]✗ Missing[/]"
        key_table.add_row(key, status_str)

    console.print(key_table)

    config = load_config(repo.resolve() if repo else None)
    console.print("\n[bold]Routing:[/]")
    console.print(f"  Planner:     {config.routing.planner}")
    console.print(f"  Implementer: {config.routing.implementer}")
    console.print(f"  Release:     {config.routing.release}")

    console.print("\n[bold]Limits:[/]")
    console.print(f"  Max iterations:  {config.loop.max_iterations}")
    console.print(f"  Max tokens/run:  {config.limits.max_tokens_per_run:,}")
    console.print(f"  Max $/run:       ${config.limits.max_dollars_per_run}")

    console.print("\n[bold]Allowed commands:[/]")
    for prefix in config.commands.allowed_prefixes:
        console.print(f"  $ {prefix}")

    tools_table = Table(title="System Tools", border_style="cyan")
    tools_table.add_column("Tool")
    tools_table.add_column("Status")

    for tool in ["git", "grep", "find", "npm"]:
        found = shutil.which(tool)
        s = f"[green]✓ {found}[/]" if found else "[dim]✗ Not found[/]"
        tools_table.add_row(tool, s)

    console.print(tools_table)


@app.command()
def init(
    repo: Optional[Path] = typer.Argument(None, help="Path to repository"),
):
    """Initialize the .gpt-pr directory in a repository."""
    _print_banner()

    repo = (repo or Path.cwd()).resolve()
    gp_dir = repo / ".gpt-pr"
    gp_dir.mkdir(exist_ok=True)

    config_path = gp_dir / "config.yaml"
    if not config_path.exists():
        config_path.write_text("""# gpt-pr repo-level config overrides
# These merge with the built-in defaults.

# routing:
#   implementer: "anthropic/claude-sonnet-4-20250514"

# loop:
#   max_iterations: 10

# commands:
#   allowed_prefixes: ["grep", "ls", "cat", "git", "npm run test"]

# github:
#   base_branch: "develop"
#   push: true
""")

    gitignore = repo / ".gitignore"
    entry = ".gpt-pr/"
    if gitignore.exists():
        content = gitignore.read_text()
        if entry not in content.splitlines():
            with open(gitignore, "a") as f:
                f.write(f"\n# gpt-pr\n{entry}\n")
    else:
        gitignore.write_text(f"# gpt-pr\n{entry}\n")

    console.print(f"[green]✅ Initialized gpt-pr in {gp_dir}[/]")
    console.print(f"  Config:  {config_path}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False),
            level="WARNING",
            format="{message}",
        )


if __name__ == "__main__":
    app()
