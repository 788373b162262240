"""
gpt-pr Controller — The Loop

It is NOT smart. It is deterministic.

Pipeline: Plan → Iterate (bounded) → Finalize

  Plan      one planner call: branch name + opening gameplan
  Iterate   context bundle → implementer reply → apply patch →
            run requested commands → next state, until the model
            says complete or the iteration ceiling is reached
  Finalize  commit message + change log → commit → push → PR

It never writes code. It only coordinates.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from gptpr.agents import AgentContext, MalformedReplyError
from gptpr.agents.implementer import ImplementerAgent
from gptpr.agents.planner import Plan, PlannerAgent, derive_branch_name
from gptpr.agents.release import Release, ReleaseAgent
from gptpr.audit_logger import AuditLogger
from gptpr.config_loader import GptPrConfig, load_config
from gptpr.context import ContextError, ContextGatherer
from gptpr.event_bus import EventBus, RunEvent
from gptpr.github import PullRequestClient
from gptpr.router import BudgetExceededError, Router
from gptpr.run_log import RunLog
from gptpr.state import IterationResult, IterationState, LoopPhase
from gptpr.workspace import (
    DirtyRepoError,
    PatchOutcome,
    Workspace,
    WorkspaceError,
    clean_patch,
    parse_github_remote,
)
from gptpr.workspace.tools import ToolExecutor

console = Console()

# Statuses that mean the run did not produce a usable branch.
FAILED_STATUSES = frozenset({"plan_failed", "reply_malformed", "dirty_repo", "budget_exceeded", "error"})


class Controller:
    """
    Drives one goal from plan to pull request.

    The iteration state is an immutable IterationState threaded through
    the loop; the controller holds only collaborators and per-run handles.
    """

    def __init__(
        self,
        repo_path: Path,
        config: GptPrConfig | None = None,
        router: Router | None = None,
        auto_approve: bool = False,
        push: bool | None = None,
        branch: str | None = None,
        max_iterations: int | None = None,
    ):
        self.repo_path = repo_path.resolve()
        self.config = config or load_config(self.repo_path)
        self.auto_approve = auto_approve
        self.push = self.config.github.push if push is None else push
        self.branch = branch
        self.max_iterations = max_iterations or self.config.loop.max_iterations

        # Core components
        self.router = router or Router(self.config)
        self.workspace = Workspace(
            self.repo_path,
            log_dir=self.config.workspace.log_dir,
            timeout=self.config.commands.timeout_seconds,
        )
        self.gatherer = ContextGatherer(
            self.workspace,
            readme=self.config.context.readme,
            max_file_lines=self.config.context.max_file_lines,
        )
        self.tools = ToolExecutor(
            working_dir=self.repo_path,
            allowed_prefixes=self.config.commands.allowed_prefixes,
            timeout=self.config.commands.timeout_seconds,
            max_output_chars=self.config.commands.max_output_chars,
        )
        self.bus = EventBus()

        # Agents
        self.planner = PlannerAgent(self.router)
        self.implementer = ImplementerAgent(self.router)
        self.release = ReleaseAgent(self.router)

        # Per-run handles
        self._run_log: RunLog | None = None
        self._audit: AuditLogger | None = None
        self._events: list[dict] = []
        self._phase = LoopPhase.DONE
        self._branch = ""
        self.bus.subscribe(self._collect_event)

    # -----------------------------------------------------------------------
    # Entry
    # -----------------------------------------------------------------------

    def run(self, goal: str) -> dict[str, Any]:
        """Execute plan → loop → finalize for `goal`."""
        self._events = []
        result: dict[str, Any] = {
            "goal": goal,
            "status": "pending",
            "iterations": 0,
            "completed": False,
        }

        console.print(Panel(
            f"[bold green]Goal:[/] {goal[:200]}\n"
            f"[bold]Repo:[/] {self.repo_path}  |  "
            f"[bold]Max iterations:[/] {self.max_iterations}",
            title="⚡ gpt-pr",
            border_style="bright_green",
        ))

        try:
            if self.config.workspace.require_clean:
                self.workspace.ensure_clean()

            # ── 1. Plan ──
            plan = self._run_planner(goal)
            branch = self.branch or derive_branch_name(
                plan.branch_name, goal, prefix=self.config.workspace.branch_prefix
            )
            result["branch"] = self._branch = branch

            self._run_log = RunLog(self.repo_path, self.config.workspace.log_dir, branch)
            self._audit = AuditLogger(self._run_log.events_path, self.bus)
            self._run_log.write_plan({**plan.model_dump(), "resolved_branch": branch})
            self._emit("plan_created", "planner", {"branch": branch})

            self._print_plan(plan, branch)
            if self.config.intervention.pause_after_plan and not self._confirm("Approve plan?"):
                result["status"] = "plan_rejected"
                return result

            self.workspace.checkout_branch(branch)

            # ── 2. Iterate ──
            state = IterationState(
                goal=goal,
                gameplan=plan.initial_gameplan or self.config.loop.seed_gameplan,
                working_file=self._existing_file(plan.initial_working_file),
            )
            final_state, completed = self.run_loop(state)
            result["iterations"] = final_state.iteration
            result["completed"] = completed

            # ── 3. Finalize ──
            self._finalize(goal, plan, branch, result)

        except DirtyRepoError as e:
            console.print(f"[red]🚫 {e}[/]")
            result["status"] = "dirty_repo"
            result["error"] = str(e)
        except MalformedReplyError as e:
            console.print(f"[red]💥 Malformed model reply: {e}[/]")
            result["status"] = "plan_failed" if e.agent == "planner" else "reply_malformed"
            result["error"] = str(e)
        except BudgetExceededError as e:
            console.print(f"[red]💸 Budget exceeded: {e}[/]")
            result["status"] = "budget_exceeded"
            result["error"] = str(e)
        except KeyboardInterrupt:
            console.print("\n[yellow]⚡ Interrupted.[/]")
            result["status"] = "interrupted"
        except (ContextError, WorkspaceError) as e:
            logger.error(f"[LOOP] {e}")
            console.print(f"[red]💥 Error: {e}[/]")
            result["status"] = "error"
            result["error"] = str(e)
        except Exception as e:
            logger.exception("Controller error")
            console.print(f"[red]💥 Error: {e}[/]")
            result["status"] = "error"
            result["error"] = str(e)
        finally:
            self._emit("run_finished", "controller", {"status": result["status"]})
            if self._audit:
                self._audit.close()
                self._audit = None
            result["budget"] = self.router.budget.summary()
            result["events"] = list(self._events)

        self._print_budget_summary()
        return result

    # -----------------------------------------------------------------------
    # Plan
    # -----------------------------------------------------------------------

    def _run_planner(self, goal: str) -> Plan:
        console.print("\n[bold magenta]🧠 [PLANNER] Planning...[/]")
        bundle = (
            f"### Git Status\n{self.workspace.status_short().rstrip() or '(clean)'}\n\n"
            f"### Git Tree\n{self.workspace.tree().rstrip()}"
        )
        context = AgentContext(goal=goal, repo_path=str(self.repo_path), bundle=bundle)
        return self.planner.run(context)

    # -----------------------------------------------------------------------
    # Iterate
    # -----------------------------------------------------------------------

    def run_loop(self, state: IterationState) -> tuple[IterationState, bool]:
        """
        Run iterations until the model reports completion or the ceiling
        is reached. Returns the last state and whether completion was reported.
        """
        while state.iteration < self.max_iterations:
            n = state.iteration
            self._set_phase(LoopPhase.RUNNING, n)
            console.print(f"\n[bold blue]🔁 [LOOP] Iteration {n + 1}/{self.max_iterations}[/]")

            reply = self._request_iteration(state)
            self._log_reply(n, reply)

            patch_error = None
            if reply.has_patch:
                self._set_phase(LoopPhase.APPLYING_PATCH, n)
                outcome = self._apply_patch(n, reply.patch)
                if not outcome.applied:
                    patch_error = f"The patch from iteration {n + 1} was not applied:\n{outcome.error}"

            if reply.complete:
                self._run_log.mark_complete(n, reply.patch_description)
                self._set_phase(LoopPhase.DONE, n)
                console.print("[green]✅ Model reports the goal is complete.[/]")
                return state.model_copy(update={"iteration": n + 1}), True

            self._set_phase(LoopPhase.ADVANCING, n)
            outputs = self.tools.run_all(reply.commands)
            self._run_log.write_command_output(n, outputs)
            self._emit("commands_run", "tools", {"requested": len(reply.commands), "ran": len(outputs)}, n)

            state = state.advance(reply, outputs, patch_error)

        self._set_phase(LoopPhase.DONE, state.iteration)
        console.print(f"[yellow]⚠ Iteration ceiling ({self.max_iterations}) reached.[/]")
        return state, False

    def _request_iteration(self, state: IterationState) -> IterationResult:
        bundle = self.gatherer.gather(state)
        context = AgentContext(
            goal=state.goal,
            repo_path=str(self.repo_path),
            bundle=bundle,
            branch=self._branch,
            extra={
                "iteration": state.iteration,
                "max_iterations": self.max_iterations,
                "allowed_prefixes": self.config.commands.allowed_prefixes,
            },
        )
        try:
            return self.implementer.run(context)
        except MalformedReplyError:
            self._emit("reply_malformed", "implementer", {}, state.iteration)
            raise

    def _log_reply(self, n: int, reply: IterationResult) -> None:
        self._run_log.write_response(n, reply)
        self._emit("reply_received", "implementer", {
            "has_patch": reply.has_patch,
            "commands": len(reply.commands),
            "working_file": reply.working_file,
            "complete": reply.complete,
        }, n)
        if reply.patch_description:
            console.print(f"  [dim]{reply.patch_description[:200]}[/]")

    def _apply_patch(self, n: int, patch: str) -> PatchOutcome:
        cleaned = clean_patch(patch)
        patch_file = self._run_log.write_patch(n, cleaned)
        outcome = self.workspace.apply_patch(patch_file)

        if outcome.applied:
            console.print("  [cyan]PATCH applied[/]")
        else:
            console.print(f"  [yellow]⚠ PATCH_FAILED {outcome.error[:200]}[/]")
        self._emit("patch_applied" if outcome.applied else "patch_failed", "workspace", {
            "error": outcome.error,
        }, n)
        return outcome

    # -----------------------------------------------------------------------
    # Finalize
    # -----------------------------------------------------------------------

    def _finalize(self, goal: str, plan: Plan, branch: str, result: dict[str, Any]) -> None:
        console.print("\n[bold cyan]📦 [RELEASE] Preparing commit...[/]")

        diff = self.workspace.diff()
        release = self._run_release(goal, plan, branch, diff)
        self._run_log.write_change_log(release.change_log.to_markdown(title=f"Change Log: {branch}"))

        try:
            sha = self.workspace.commit(release.commit_message)
        except WorkspaceError as e:
            logger.warning(f"[RELEASE] Commit failed: {e}")
            result["status"] = "commit_failed"
            result["error"] = str(e)
            return

        if sha is None:
            console.print("[yellow]No changes to commit.[/]")
            result["status"] = "no_changes"
            return

        result["commit"] = sha
        result["status"] = "committed"
        self._emit("committed", "workspace", {"sha": sha, "message": release.commit_message})
        console.print(f"[green]Committed {sha[:10]} on {branch}: {release.commit_message}[/]")

        if not self.push:
            return

        if self.config.intervention.pause_before_pr and not self._confirm("Push and open PR?"):
            result["status"] = "pr_cancelled"
            return

        try:
            self.workspace.push(branch)
        except WorkspaceError as e:
            logger.warning(f"[RELEASE] Push failed: {e}")
            return

        pr_url = self._create_pr(branch, release, plan)
        if pr_url:
            result["pr_url"] = pr_url
            result["status"] = "pr_created"
            console.print(f"[bold green]✅ PR created: {pr_url}[/]")
        else:
            console.print(f"[yellow]Changes pushed to {branch}; PR was not created.[/]")

    def _run_release(self, goal: str, plan: Plan, branch: str, diff: str) -> Release:
        context = AgentContext(
            goal=goal,
            repo_path=str(self.repo_path),
            branch=branch,
            extra={"diff": diff, "plan": plan.initial_gameplan},
        )
        try:
            return self.release.run(context)
        except BudgetExceededError:
            raise
        except Exception as e:
            logger.warning(f"[RELEASE] Release call failed ({e}); using default commit message.")
            return Release.default(branch)

    def _create_pr(self, branch: str, release: Release, plan: Plan) -> str | None:
        gh = self.config.github
        owner, repo = gh.owner, gh.repo
        if not (owner and repo):
            remote = self.workspace.remote_url()
            parsed = parse_github_remote(remote) if remote else None
            if not parsed:
                logger.error(f"[GITHUB] Cannot determine owner/repo from remote {remote!r}")
                return None
            owner, repo = parsed

        body = "\n\n".join(
            part for part in (
                plan.initial_gameplan,
                release.change_log.to_markdown(title="Change Log"),
                "---\n*Generated by gpt-pr*",
            ) if part
        )
        client = PullRequestClient(gh.token, api_url=gh.api_url)
        return client.create(
            owner=owner,
            repo=repo,
            head=branch,
            base=gh.base_branch,
            title=release.commit_message,
            body=body,
        )

    # -----------------------------------------------------------------------
    # Display Helpers
    # -----------------------------------------------------------------------

    def _print_plan(self, plan: Plan, branch: str) -> None:
        table = Table(title="Plan", border_style="magenta", show_header=False)
        table.add_column("Field", style="dim")
        table.add_column("Value")
        table.add_row("Branch", branch)
        table.add_row("Gameplan", plan.initial_gameplan or "(seed gameplan)")
        table.add_row("Reads", ", ".join(plan.required_file_reads) or "-")
        table.add_row("Writes", ", ".join(plan.required_file_writes) or "-")
        console.print(table)

    def _print_budget_summary(self) -> None:
        summary = self.router.budget.summary()
        console.print(Panel(
            f"Tokens: {summary['total_tokens']:,} / "
            f"Cost: ${summary['estimated_cost']:.4f} / "
            f"Calls: {summary['call_count']}",
            title="💸 Budget",
            border_style="green",
        ))

    # -----------------------------------------------------------------------
    # Utilities
    # -----------------------------------------------------------------------

    def _existing_file(self, path: str | None) -> str | None:
        if path and (self.repo_path / path).is_file():
            return path
        return None

    def _confirm(self, prompt: str) -> bool:
        if self.auto_approve:
            return True
        return Confirm.ask(f"[bold]{prompt}[/]")

    def _set_phase(self, phase: LoopPhase, iteration: int) -> None:
        self._phase = phase
        logger.debug(f"[LOOP] iteration={iteration} phase={phase.value}")

    def _emit(self, event_type: str, source: str, payload: dict | None = None, iteration: int | None = None) -> None:
        self.bus.emit(event_type, source, payload or {}, iteration=iteration)

    def _collect_event(self, event: RunEvent) -> None:
        self._events.append(event.model_dump())
