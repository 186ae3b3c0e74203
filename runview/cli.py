"""Command line interface for inspecting workflow runs."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, NoReturn, Optional, TypeVar

import typer

from runview import get_runs_api, load_config
from runview.api.base import RunsApi
from runview.approval import ApprovalGateway, approval_instructions
from runview.contracts import ApprovalDecision, RunRecord
from runview.errors import TransportFailure
from runview.graph import load_graph, visual_steps
from runview.resolver import explain, resolve_run
from runview.utils.timefmt import format_duration

T = TypeVar("T")

app = typer.Typer(help="CLI for workflow run projections")

# Command groups
runs_app = typer.Typer(help="Commands for browsing run history")
approvals_app = typer.Typer(help="Commands for runs waiting on approval")

app.add_typer(runs_app, name="runs")
app.add_typer(approvals_app, name="approvals")


@app.callback()
def main() -> None:
    """Runview CLI entry point."""
    pass


def _fail(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _call(api_url: Optional[str], action: Callable[[RunsApi], Awaitable[T]]) -> T:
    """Run ``action`` against the configured API, turning transport errors into exit 1."""
    api = get_runs_api(api_url)

    async def runner() -> T:
        try:
            return await action(api)
        finally:
            await api.aclose()

    try:
        return asyncio.run(runner())
    except TransportFailure as exc:
        _fail(f"Request failed: {exc}")


def _timestamp(run: RunRecord) -> str:
    return run.created_at.strftime("%Y-%m-%d %H:%M:%S") if run.created_at else "-"


def _get_run(api_url: Optional[str], flow_id: str, run_id: str) -> RunRecord:
    run = _call(api_url, lambda api: api.get_run(flow_id, run_id))
    if run is None:
        _fail(f"Run {run_id} not found")
    return run


@runs_app.command("list")
def runs_list(
    flow_id: str,
    api_url: Optional[str] = typer.Option(None, help="Base URL of the runs API"),
) -> None:
    """
    List the run history of a workflow, newest first.

    Example:
        runview runs list flow-42
        # Output: Run #3    running    2024-01-01 10:02:00    run-c
        #         Run #2    success    2024-01-01 10:01:00    run-b
    """
    runs = _call(api_url, lambda api: api.list_runs(flow_id))
    if not runs:
        typer.echo("No runs found")
        return
    total = len(runs)
    for index, run in enumerate(runs):
        typer.echo(f"Run #{total - index}\t{run.status}\t{_timestamp(run)}\t{run.id}")


@runs_app.command("show")
def runs_show(
    flow_id: str,
    run_id: str,
    graph: Path = typer.Option(..., help="Editor graph export (JSON)"),
    explain_matches: bool = typer.Option(
        False, "--explain", help="Show which payload key matched each step"
    ),
    api_url: Optional[str] = typer.Option(None, help="Base URL of the runs API"),
) -> None:
    """
    Show the per-step status of one run, in visual order.

    Example:
        runview runs show flow-42 run-b --graph ./flow.json --explain
        # Output: Run run-b: success (2024-01-01 10:01:00)
        #         - New email: success 120ms [TriggerAlias]
        #         - Send reply: skipped 0ms [-]
    """
    if not graph.exists():
        _fail("Specified graph file does not exist")
    try:
        graph_model = load_graph(graph)
    except (KeyError, ValueError) as exc:
        _fail(f"Invalid graph file: {exc}")

    run = _get_run(api_url, flow_id, run_id)
    config = load_config()
    aliases = config.view.trigger_aliases
    results = resolve_run(graph_model, run, aliases)
    matches = explain(graph_model, run.result_payload, aliases) if explain_matches else {}

    typer.echo(f"Run {run.id}: {run.status} ({_timestamp(run)})")
    for node in visual_steps(graph_model, config.view.row_tolerance):
        step = results[node.id]
        line = f"- {node.display_label}: {step.status.value} {format_duration(step.duration_ms)}"
        if explain_matches:
            line += f" [{matches.get(node.id) or '-'}]"
        typer.echo(line)


@approvals_app.command("list")
def approvals_list(
    flow_id: str,
    api_url: Optional[str] = typer.Option(None, help="Base URL of the runs API"),
) -> None:
    """List runs paused at an approval step, with their instructions."""
    runs = _call(api_url, lambda api: api.list_runs(flow_id))
    waiting = ApprovalGateway.pending(runs)
    if not waiting:
        typer.echo("No runs waiting for approval")
        return
    for run in waiting:
        typer.echo(f"{run.id}\t{_timestamp(run)}")
        typer.echo(f"  {approval_instructions(run)}")


def _decide(
    flow_id: str, run_id: str, decision: ApprovalDecision, approver: Optional[str], api_url: Optional[str]
) -> None:
    run = _get_run(api_url, flow_id, run_id)
    waiting = run.as_waiting()
    if waiting is None:
        _fail(f"Run {run_id} is not waiting for approval (status: {run.status})")

    config = load_config()

    async def submit(api: RunsApi) -> Optional[str]:
        gateway = ApprovalGateway(flow_id, api, config=config.approval)
        request = gateway.open(waiting)
        if await gateway.submit(decision, approver=approver):
            return None
        return request.error or "unknown error"

    error = _call(api_url, submit)
    if error is not None:
        _fail(f"Could not {decision.value} run {run_id}: {error}")
    verb = "resumed" if decision == ApprovalDecision.RESUME else "rejected"
    typer.echo(f"Run {run_id} {verb}")


@approvals_app.command("resume")
def approvals_resume(
    flow_id: str,
    run_id: str,
    approver: Optional[str] = typer.Option(None, help="Who approved the step"),
    api_url: Optional[str] = typer.Option(None, help="Base URL of the runs API"),
) -> None:
    """Approve a paused run so the engine continues it."""
    _decide(flow_id, run_id, ApprovalDecision.RESUME, approver, api_url)


@approvals_app.command("reject")
def approvals_reject(
    flow_id: str,
    run_id: str,
    approver: Optional[str] = typer.Option(None, help="Who rejected the step"),
    api_url: Optional[str] = typer.Option(None, help="Base URL of the runs API"),
) -> None:
    """Reject a paused run; the engine marks it rejected."""
    _decide(flow_id, run_id, ApprovalDecision.REJECT, approver, api_url)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
