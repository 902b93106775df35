import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import click
import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from planrunner import __version__
from planrunner.domain.plans.errors import PlanException
from planrunner.domain.plans.events import EVENT_TYPES
from planrunner.domain.plans.models import ExecutionMode, Plan, PlanStatus, StepStatus

console = Console()

DEFAULT_API_URL = os.getenv("PLANRUNNER_URL", "http://localhost:8000")
LOCAL_THREAD_ID = "local"

STATUS_STYLES = {
    StepStatus.COMPLETED.value: "green",
    StepStatus.FAILED.value: "red",
    StepStatus.RUNNING.value: "yellow",
    StepStatus.PENDING.value: "dim",
}


@click.group()
@click.version_option(version=__version__, prog_name="planrunner")
def cli():
    """
    planrunner - approve, run and cancel agent plans

    Run plans locally or drive a running planrunner server.
    """
    pass


def render_event(event: Dict[str, Any]) -> None:
    """Print one progress event."""
    event_type = event.get("type")
    if event_type not in EVENT_TYPES:
        console.print(f"[yellow]Unknown event:[/yellow] {json.dumps(event)}")
        return

    if event_type == "plan-approved":
        console.print(f"[bold cyan]Plan {event['planId']} approved[/bold cyan]")
    elif event_type == "execution-started":
        console.print(f"Executing {event['totalSteps']} steps")
    elif event_type == "step-progress":
        style = STATUS_STYLES.get(event["status"], "white")
        line = f"  [{style}]{event['status']:>9}[/{style}]  step {event['stepIndex'] + 1} ({event['stepId']})"
        if event.get("message"):
            line += f": {event['message']}"
        console.print(line)
    elif event_type == "step-mode-enabled":
        next_step = event.get("nextStep")
        console.print(f"[cyan]Step mode: next step is {next_step + 1 if next_step is not None else 'none'}[/cyan]")
    elif event_type == "execution-complete":
        style = "green" if event["success"] else "red"
        body = (
            f"Completed {event['completedSteps']} of {event['totalSteps']} steps "
            f"in {event['executionTime']} ms"
        )
        if event.get("errors"):
            body += "\n\n" + "\n".join(f"- {error}" for error in event["errors"])
        console.print(Panel.fit(body, title="Execution complete", border_style=style))
    elif event_type == "error":
        console.print(f"[bold red]Error:[/bold red] {event['error']}")


def render_plan(plan: Plan) -> None:
    table = Table(title=f"Plan {plan.id} ({plan.status.value})")
    table.add_column("#", justify="right")
    table.add_column("Step", style="cyan")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Error", style="red")

    for index, step in enumerate(plan.steps):
        style = STATUS_STYLES.get(step.status.value, "white")
        table.add_row(
            str(index + 1),
            step.description or step.id,
            step.action_name,
            f"[{style}]{step.status.value}[/{style}]",
            step.error or "",
        )

    console.print(table)
    if plan.summary:
        console.print(plan.summary)


def load_plan_file(plan_file: str) -> Plan:
    data = json.loads(Path(plan_file).read_text())
    data.setdefault("id", Path(plan_file).stem)
    return Plan.from_dict(data)


async def run_local(plan: Plan, mode: ExecutionMode) -> Plan:
    """Approve and execute a plan in-process against an in-memory store."""
    from planrunner.application.plans.providers import build_plan_use_cases
    from planrunner.infrastructure.plans.stores import InMemoryPlanStore

    store = InMemoryPlanStore()
    await store.create_thread(LOCAL_THREAD_ID, [plan])
    use_cases = build_plan_use_cases(plan_store=store, cross_instance_cancel=False)

    stream = await use_cases.approve_plan(plan.id, mode.value, LOCAL_THREAD_ID, user_id="cli")
    last_event: Dict[str, Any] = {}
    async for event in stream:
        last_event = event.to_dict()
        render_event(last_event)

    while last_event.get("type") == "step-mode-enabled":
        if last_event.get("nextStep") is None:
            break
        stream = await use_cases.run_next_step(plan.id, LOCAL_THREAD_ID, user_id="cli")
        async for event in stream:
            last_event = event.to_dict()
            render_event(last_event)

    await use_cases.wait_idle()
    return await store.get_plan(LOCAL_THREAD_ID, plan.id)


def iter_sse_events(lines: Iterator[str]) -> Iterator[Dict[str, Any]]:
    """Decode `data:` frames from a Server-Sent Events line stream."""
    for line in lines:
        if line.startswith("data:"):
            yield json.loads(line[len("data:"):].strip())


def _auth_headers(token: Optional[str]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}


def _error_detail(response: httpx.Response) -> str:
    try:
        return response.json().get("detail", response.text)
    except ValueError:
        return response.text


@cli.command()
@click.option("--host", default=None, help="Bind address (defaults to APP_HOST)")
@click.option("--port", default=None, type=int, help="Bind port (defaults to APP_PORT)")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API server"""
    import uvicorn
    from planrunner.core.config import settings

    uvicorn.run(
        "planrunner.main:app",
        host=host or settings.APP_HOST,
        port=port or settings.APP_PORT,
        reload=reload,
    )


@cli.command()
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--mode", type=click.Choice(["all", "step"]), default="all", show_default=True)
def run(plan_file: str, mode: str):
    """Execute a plan JSON file locally"""
    from planrunner.core.logging import configure_logging

    configure_logging(level="WARNING")
    try:
        plan = load_plan_file(plan_file)
    except (ValueError, KeyError) as e:
        raise click.ClickException(f"Invalid plan file: {e}")

    try:
        final_plan = asyncio.run(run_local(plan, ExecutionMode(mode)))
    except PlanException as e:
        raise click.ClickException(str(e))

    render_plan(final_plan)
    if final_plan.status != PlanStatus.COMPLETED:
        raise SystemExit(1)


@cli.command()
@click.argument("plan_id")
@click.argument("thread_id")
@click.option("--mode", type=click.Choice(["all", "step"]), default="all", show_default=True)
@click.option("--url", default=DEFAULT_API_URL, show_default=True, help="planrunner server URL")
@click.option("--token", envvar="PLANRUNNER_TOKEN", default=None, help="Bearer token")
def approve(plan_id: str, thread_id: str, mode: str, url: str, token: Optional[str]):
    """Approve a plan on a server and follow its progress"""
    payload = {"planId": plan_id, "mode": mode, "threadId": thread_id}
    try:
        with httpx.Client(base_url=url, timeout=None) as client:
            with client.stream(
                "POST",
                "/api/ai/agent/plan/approve",
                json=payload,
                headers=_auth_headers(token),
            ) as response:
                if response.status_code != 200:
                    response.read()
                    raise click.ClickException(
                        f"{response.status_code}: {_error_detail(response)}"
                    )
                for event in iter_sse_events(response.iter_lines()):
                    render_event(event)
    except httpx.HTTPError as e:
        raise click.ClickException(f"Request failed: {e}")


@cli.command()
@click.argument("plan_id")
@click.argument("thread_id")
@click.option("--url", default=DEFAULT_API_URL, show_default=True, help="planrunner server URL")
@click.option("--token", envvar="PLANRUNNER_TOKEN", default=None, help="Bearer token")
def cancel(plan_id: str, thread_id: str, url: str, token: Optional[str]):
    """Cancel a plan that is executing on a server"""
    try:
        response = httpx.post(
            f"{url}/api/ai/agent/plan/cancel",
            json={"planId": plan_id, "threadId": thread_id},
            headers=_auth_headers(token),
        )
    except httpx.HTTPError as e:
        raise click.ClickException(f"Request failed: {e}")

    if response.status_code != 200:
        raise click.ClickException(f"{response.status_code}: {_error_detail(response)}")

    data = response.json()
    style = "green" if data.get("success") else "yellow"
    console.print(f"[{style}]{data.get('message')}[/{style}]")


if __name__ == "__main__":
    cli()
